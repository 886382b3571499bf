"""
Coordinate ranges over a reference and their partitioning into fixed-size shards.

A range [start, end) is split by walking from start in steps of the shard
width; the last shard takes the remainder. Shards come back in ascending
order so that request lists built from them are reproducible across runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List

from .config import DEFAULT_BASES_PER_SHARD
from .errors import InvalidRangeError, ParseError


@dataclass(frozen=True)
class Contig:
    reference_name: str
    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end <= self.start:
            raise InvalidRangeError(
                f"invalid range {self.reference_name}:{self.start}:{self.end} "
                "(need 0 <= start < end)")

    @property
    def width(self) -> int:
        return self.end - self.start

    def iter_shards(self, max_shard_size: int = DEFAULT_BASES_PER_SHARD) -> Iterator["Contig"]:
        if max_shard_size <= 0:
            raise InvalidRangeError(f"shard size must be positive, got {max_shard_size}")
        cursor = self.start
        while cursor < self.end:
            stop = min(cursor + max_shard_size, self.end)
            yield Contig(self.reference_name, cursor, stop)
            cursor = stop

    def shards(self, max_shard_size: int = DEFAULT_BASES_PER_SHARD) -> List["Contig"]:
        return list(self.iter_shards(max_shard_size))

    def __str__(self) -> str:
        return f"{self.reference_name}:{self.start}:{self.end}"


def shard(contig: Contig, max_shard_size: int = DEFAULT_BASES_PER_SHARD) -> List[Contig]:
    return contig.shards(max_shard_size)


def parse_references(spec: str) -> List[Contig]:
    """
    Parse 'ref:start:end,ref:start:end,...' into Contigs.

    Raises ParseError naming the offending token when a tuple does not have
    three fields or its coordinates are not integers; InvalidRangeError
    when the coordinates are out of order.
    """
    contigs = []
    for token in spec.split(","):
        token = token.strip()
        if not token:
            continue
        fields = token.split(":")
        if len(fields) != 3 or not fields[0]:
            raise ParseError("Expected reference:start:end", token)
        name = fields[0]
        try:
            start, end = int(fields[1]), int(fields[2])
        except ValueError:
            raise ParseError("Non-integer coordinates", token) from None
        contigs.append(Contig(name, start, end))
    if not contigs:
        raise ParseError("No references given", spec)
    return contigs
