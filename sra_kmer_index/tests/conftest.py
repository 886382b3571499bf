import random
from typing import Dict, Iterable, List, Tuple

import pytest

from sra_kmer_index.errors import StorageError
from sra_kmer_index.regions import Contig


class MemoryStore:
    """Dict-backed ObjectStore that records every call."""

    def __init__(self, files: Dict[str, bytes] = None):
        self.files = dict(files or {})
        self.exists_calls: List[str] = []
        self.writes: List[str] = []

    def exists(self, path: str) -> bool:
        self.exists_calls.append(path)
        return path in self.files

    def read(self, path: str) -> bytes:
        if path not in self.files:
            raise StorageError(path, FileNotFoundError(path))
        return self.files[path]

    def write(self, path: str, data: bytes) -> None:
        self.writes.append(path)
        self.files[path] = data


class FakeAssembler:
    """Returns canned FASTA per accession; raises for accessions listed in 'fail'."""

    def __init__(self, fastas: Dict[str, bytes], fail: Iterable[str] = ()):
        self.fastas = fastas
        self.fail = set(fail)
        self.calls: List[str] = []

    def assemble(self, accession: str) -> bytes:
        self.calls.append(accession)
        if accession in self.fail:
            raise RuntimeError(f"velvetg exited with status 1 for {accession}")
        return self.fastas[accession]


class StaticCatalog:
    def __init__(self, contigs: List[Contig]):
        self.contigs = contigs

    def list_contigs(self, dataset_id: str, exclude_xy: bool) -> List[Contig]:
        return [c for c in self.contigs
                if not (exclude_xy and c.reference_name in ("X", "Y"))]


def velvet_fasta(contigs: List[Tuple[str, float]]) -> bytes:
    """Render (sequence, coverage) pairs as velvet-style contigs.fa."""
    lines = []
    for i, (seq, cov) in enumerate(contigs, start=1):
        lines.append(f">NODE_{i}_length_{len(seq)}_cov_{cov:.6f}")
        for lo in range(0, len(seq), 60):
            lines.append(seq[lo:lo + 60])
    return ("\n".join(lines) + "\n").encode()


def random_dna(n: int, seed: int) -> str:
    rng = random.Random(seed)
    return "".join(rng.choice("ACGT") for _ in range(n))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def two_accessions():
    """SRR1 assembles to a 40 bp contig, SRR2 to an 80 bp contig."""
    return {
        "SRR1": velvet_fasta([(random_dna(40, seed=1), 12.0)]),
        "SRR2": velvet_fasta([(random_dna(80, seed=2), 25.5)]),
    }
