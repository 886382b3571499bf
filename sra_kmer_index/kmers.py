"""
Sliding-window k-mer extraction over assembled contigs.

generate_kmers() is the record-level view: one KmerRecord per offset
0 .. L-k, overlapping windows, no gaps. It is an iterable that can be walked
any number of times.

count_kmers() is what the index passes use. It produces the same multiset
of (kmer, accession) pairs but counts them with numpy instead of building a
record per window, which matters for long contigs and large k.
"""

from __future__ import annotations

from typing import Iterable, Iterator, NamedTuple

import numpy as np

from .assembly import AssembledContig
from .config import K_MAX, K_MIN
from .errors import InvalidKValueError
from .index_writer import KmerCounts

# cap the bytes materialised per numpy block (~64 MB)
_BLOCK_BYTES = 1 << 26


class KmerRecord(NamedTuple):
    kmer: str
    accession: str
    position: int


def check_k(k) -> int:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidKValueError(k)
    if k < K_MIN or k > K_MAX:
        raise InvalidKValueError(k)
    return int(k)


class KmerWindows:
    """Restartable, sized iterable of the k-mer windows of one contig."""

    def __init__(self, contig: AssembledContig, k: int):
        self.contig = contig
        self.k = check_k(k)

    def __len__(self) -> int:
        return max(0, len(self.contig.sequence) - self.k + 1)

    def __iter__(self) -> Iterator[KmerRecord]:
        seq, k, acc = self.contig.sequence, self.k, self.contig.accession
        for pos in range(len(self)):
            yield KmerRecord(seq[pos:pos + k], acc, pos)


def generate_kmers(contig: AssembledContig, k: int) -> KmerWindows:
    return KmerWindows(contig, k)


def _count_windows(seq: str, k: int, counts: KmerCounts, accession: str) -> None:
    n = len(seq) - k + 1
    if n <= 0:
        return
    arr = np.frombuffer(seq.encode("ascii"), dtype=np.uint8)
    windows = np.lib.stride_tricks.sliding_window_view(arr, k)
    rows = max(1, _BLOCK_BYTES // k)
    for lo in range(0, n, rows):
        # (rows, k) uint8 -> (rows,) fixed-width byte strings
        block = np.ascontiguousarray(windows[lo:lo + rows]).view(f"S{k}").ravel()
        uniq, cnt = np.unique(block, return_counts=True)
        for kmer, c in zip(uniq, cnt):
            counts.add(kmer.decode("ascii"), accession, int(c))


def count_kmers(contigs: Iterable[AssembledContig], k: int) -> KmerCounts:
    """Count every k-mer of every contig, keyed by (kmer, accession)."""
    k = check_k(k)
    counts = KmerCounts()
    for contig in contigs:
        _count_windows(contig.sequence, k, counts, contig.accession)
    return counts
