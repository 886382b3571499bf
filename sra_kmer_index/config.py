"""
Global configuration and constants for the SRA assembly k-mer index pipeline.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import InvalidKValueError, ParseError

# K values accepted by the k-mer passes (inclusive)
K_MIN = 1
K_MAX = 256

# "Effectively unbounded" threshold defaults; a threshold left at its
# sentinel disables that check.
LENGTH_THRESHOLD_UNSET = 2**31 - 1
COVERAGE_THRESHOLD_UNSET = sys.float_info.max

# Variant-query side
DEFAULT_DATASET_ID = "10473108253681171589"  # 1000 Genomes
BRCA1 = "17:41196311:41277499"
DEFAULT_BASES_PER_SHARD = 1_000_000

# Outputs
DEFAULT_OUTPUT_PREFIX = "KmerIndex"
CONTIGS_DIR = "contigs"
CONTIG_SUFFIX = ".fasta"

# Contigs per k-mer work unit
DEFAULT_CHUNK_SIZE = 64


def join_location(base: str, *parts: str) -> str:
    """Join path parts onto a local path or an s3:// / gs:// prefix."""
    out = base.rstrip("/")
    for p in parts:
        out = f"{out}/{p.strip('/')}"
    return out


def parse_k_values(raw: str) -> Tuple[int, ...]:
    """
    Parse '21,31,...' into a tuple of ints, preserving order and dropping
    repeats. Non-integers raise ParseError; out-of-range values raise
    InvalidKValueError.
    """
    values: List[int] = []
    for token in raw.split(","):
        token = token.strip()
        try:
            k = int(token)
        except ValueError:
            raise ParseError("Invalid K value", token) from None
        if k < K_MIN or k > K_MAX:
            raise InvalidKValueError(k)
        if k not in values:
            values.append(k)
    return tuple(values)


@dataclass
class PipelineOptions:
    """Configuration snapshot for one pipeline run. Treat as read-only after check_args()."""
    output_location: str
    accessions_file: Optional[str] = None
    k_values: str = "31"
    output_prefix: str = DEFAULT_OUTPUT_PREFIX
    staging_location: Optional[str] = None
    write_table: bool = False
    output_contigs: bool = False
    force_assembly: bool = False
    length_threshold: int = LENGTH_THRESHOLD_UNSET
    coverage_threshold: float = COVERAGE_THRESHOLD_UNSET
    # variant-request side
    dataset_id: str = DEFAULT_DATASET_ID
    references: str = BRCA1
    all_contigs: bool = False
    exclude_xy: bool = True
    bases_per_shard: int = DEFAULT_BASES_PER_SHARD
    # execution
    parallel: int = 1
    chunk_size: int = DEFAULT_CHUNK_SIZE
    contig_report: bool = False
    _parsed_k: Optional[Tuple[int, ...]] = field(default=None, init=False, repr=False, compare=False)

    def parse_k_values(self) -> Tuple[int, ...]:
        if self._parsed_k is None:
            self._parsed_k = parse_k_values(self.k_values)
        return self._parsed_k

    @property
    def cache_location(self) -> Optional[str]:
        """Where assembled contigs are persisted and looked up."""
        if self.output_contigs:
            return join_location(self.output_location, CONTIGS_DIR)
        if self.staging_location:
            return join_location(self.staging_location, CONTIGS_DIR)
        return None

    def check_args(self) -> None:
        """Validate everything up front; any error here aborts the run before work starts."""
        from .regions import parse_references

        self.parse_k_values()
        if not self.output_location:
            raise ParseError("output location is required")
        if self.chunk_size < 1:
            raise ParseError("chunk size must be positive", str(self.chunk_size))
        if self.bases_per_shard < 1:
            raise ParseError("bases per shard must be positive", str(self.bases_per_shard))
        if not self.all_contigs:
            parse_references(self.references)
