"""
Merge per-chunk k-mer counts and write one index artifact per k value.

Counts are keyed by (kmer, accession) and merged by addition, so partial
counts from any split of the contigs combine to the same result in any
order.

Two output layouts, named <prefix>K<k>.csv / <prefix>K<k>.txt:

  table   (csv)  kmer,<acc1>,<acc2>,...     one row per distinct k-mer,
                                            0 where an accession lacks it
  entries (txt)  kmer<TAB>accession<TAB>count   one line per pair, grouped by kmer

A Parquet summary of the assembled contigs can be written alongside.
"""

from __future__ import annotations

import io
from collections import Counter
from typing import Dict, Iterable, List, Tuple

import pandas as pd

from .config import join_location
from .io_store import ObjectStore
from .log import get_logger

LOGGER = get_logger("index_writer")

TABLE_EXT = "csv"
ENTRIES_EXT = "txt"


class KmerCounts:
    def __init__(self):
        self._counts: Counter = Counter()

    @classmethod
    def from_records(cls, records: Iterable) -> "KmerCounts":
        """Count KmerRecord-like tuples (kmer, accession, ...)."""
        out = cls()
        for rec in records:
            out.add(rec[0], rec[1])
        return out

    @classmethod
    def combine(cls, parts: Iterable["KmerCounts"]) -> "KmerCounts":
        out = cls()
        for p in parts:
            out.merge(p)
        return out

    def add(self, kmer: str, accession: str, count: int = 1) -> None:
        self._counts[(kmer, accession)] += count

    def merge(self, other: "KmerCounts") -> "KmerCounts":
        self._counts.update(other._counts)
        return self

    def __len__(self) -> int:
        return len(self._counts)

    def __eq__(self, other) -> bool:
        if not isinstance(other, KmerCounts):
            return NotImplemented
        return self._counts == other._counts

    def __getitem__(self, key: Tuple[str, str]) -> int:
        return self._counts.get(key, 0)

    def as_dict(self) -> Dict[Tuple[str, str], int]:
        return dict(self._counts)

    @property
    def accessions(self) -> List[str]:
        return sorted({acc for _, acc in self._counts})

    def distinct_kmers(self) -> int:
        return len({kmer for kmer, _ in self._counts})

    def to_frame(self) -> pd.DataFrame:
        rows = [(kmer, acc, n) for (kmer, acc), n in self._counts.items()]
        df = pd.DataFrame(rows, columns=["kmer", "accession", "count"])
        return df.sort_values(["kmer", "accession"], kind="mergesort").reset_index(drop=True)

    def to_table_csv(self) -> str:
        if not self._counts:
            return "kmer\n"
        table = self.to_frame().pivot_table(index="kmer", columns="accession", values="count",
                                            aggfunc="sum", fill_value=0)
        table = table.reindex(columns=self.accessions, fill_value=0).sort_index().astype("int64")
        table.columns.name = None
        return table.reset_index().to_csv(index=False)

    def to_entries_text(self) -> str:
        buf = io.StringIO()
        for kmer, acc, n in self.to_frame().itertuples(index=False):
            buf.write(f"{kmer}\t{acc}\t{n}\n")
        return buf.getvalue()

    def serialize(self, write_table: bool) -> bytes:
        text = self.to_table_csv() if write_table else self.to_entries_text()
        return text.encode()


def output_path(output_location: str, output_prefix: str, k: int, write_table: bool) -> str:
    ext = TABLE_EXT if write_table else ENTRIES_EXT
    return join_location(output_location, f"{output_prefix}K{k}.{ext}")


def write_kmer_index(counts: KmerCounts, store: ObjectStore, output_location: str,
                     output_prefix: str, k: int, write_table: bool) -> str:
    path = output_path(output_location, output_prefix, k, write_table)
    store.write(path, counts.serialize(write_table))
    LOGGER.info("Wrote k=%d index (%s distinct k-mers, %d accessions) to %s",
                k, f"{counts.distinct_kmers():,}", len(counts.accessions), path)
    return path


def write_contig_report(rows: List[Dict], store: ObjectStore, path: str) -> str:
    """Write per-contig rows (accession, contig, length, coverage, kept) as zstd Parquet."""
    df = pd.DataFrame(rows, columns=["accession", "contig", "length", "coverage", "kept"])
    buf = io.BytesIO()
    df.to_parquet(buf, compression="zstd", index=False)
    store.write(path, buf.getvalue())
    LOGGER.info("Wrote contig report (%d rows) to %s", len(df), path)
    return path
