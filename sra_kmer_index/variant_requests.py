"""
Turn a dataset's contigs into sharded variant-search request descriptors.

Contigs come either from an explicit 'ref:start:end,...' list or, for
whole-dataset runs, from a ContigCatalog. Requests are emitted in contig
order then shard order; the list must be identical across retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import pandas as pd

from .config import DEFAULT_BASES_PER_SHARD, PipelineOptions
from .errors import ParseError
from .log import get_logger
from .regions import Contig, parse_references

LOGGER = get_logger("variant_requests")

SEX_CHROMOSOMES = {"X", "Y", "CHRX", "CHRY"}


@dataclass(frozen=True)
class VariantRequest:
    dataset_id: str
    reference_name: str
    start: int
    end: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "variantSetId": self.dataset_id,
            "referenceName": self.reference_name,
            "start": self.start,
            "end": self.end,
        }


class ContigCatalog(Protocol):
    def list_contigs(self, dataset_id: str, exclude_xy: bool) -> Sequence[Contig]:
        ...


class VariantService(Protocol):
    def query(self, request: VariantRequest) -> Iterable[dict]:
        ...


def is_sex_chromosome(reference_name: str) -> bool:
    return reference_name.upper() in SEX_CHROMOSOMES


class FaiContigCatalog:
    """
    Contig catalog backed by a samtools .fai index (or any TSV whose first two
    columns are reference name and length). Every reference becomes a
    full-length range [0, length).
    """

    def __init__(self, fai_path: Path):
        self.fai_path = Path(fai_path)

    def list_contigs(self, dataset_id: str, exclude_xy: bool) -> List[Contig]:
        try:
            df = pd.read_csv(self.fai_path, sep="\t", header=None, usecols=[0, 1],
                             dtype={0: str, 1: "int64"}, comment="#")
        except (OSError, ValueError, pd.errors.ParserError) as e:
            raise ParseError(f"Could not read contig index {self.fai_path}", str(e)) from e
        df.columns = ["name", "length"]
        contigs = []
        for name, length in zip(df["name"], df["length"]):
            if exclude_xy and is_sex_chromosome(name):
                LOGGER.debug("Skipping sex chromosome %s", name)
                continue
            contigs.append(Contig(name, 0, int(length)))
        LOGGER.info("Catalog %s lists %d contigs for dataset %s",
                    self.fai_path, len(contigs), dataset_id)
        return contigs


def build_variant_requests(dataset_id: str,
                           contigs: Iterable[Contig],
                           bases_per_shard: int = DEFAULT_BASES_PER_SHARD) -> List[VariantRequest]:
    requests = []
    for contig in contigs:
        for piece in contig.iter_shards(bases_per_shard):
            LOGGER.info("Adding request with %s %d to %d",
                        piece.reference_name, piece.start, piece.end)
            requests.append(VariantRequest(dataset_id, piece.reference_name,
                                           piece.start, piece.end))
    return requests


def variant_requests_for_options(options: PipelineOptions,
                                 catalog: Optional[ContigCatalog] = None) -> List[VariantRequest]:
    """
    Pick the contig source the options ask for and shard it. With
    all_contigs set a catalog is required; otherwise the reference list is parsed.
    """
    if options.all_contigs:
        if catalog is None:
            raise ParseError("all_contigs requested but no contig catalog was given")
        contigs = catalog.list_contigs(options.dataset_id, options.exclude_xy)
    else:
        contigs = parse_references(options.references)
    return build_variant_requests(options.dataset_id, contigs, options.bases_per_shard)
