"""
Assemble SRA accessions into contigs, reusing previously assembled contigs.

For each accession the cache gate first looks for
<cache_location>/<accession>.fasta. If it is there (and the run is not
forced) the FASTA is read back; otherwise the external assembler runs and
its FASTA is written to that path for the next run.

The existence check is point-in-time, not a lock: two runs racing on
the same accession may both assemble it. The second write simply replaces
the first with equivalent content.

Contig FASTA headers follow velvet's convention,

  >NODE_12_length_80_cov_14.250000

from which the reported length and coverage are taken. Headers that do not
match fall back to the sequence length and a coverage of 0.
"""

from __future__ import annotations

import enum
import io
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from Bio import SeqIO

from .config import CONTIG_SUFFIX, join_location
from .errors import AssemblyError, StorageError
from .io_store import ObjectStore
from .log import get_logger

LOGGER = get_logger("assembly")

VELVET_HEADER = re.compile(r"length_(\d+)_cov_([0-9.eE+-]+|nan|inf)", re.IGNORECASE)


@dataclass(frozen=True)
class AssembledContig:
    accession: str
    name: str
    sequence: str
    length: int
    coverage: float


def parse_contigs(accession: str, fasta: bytes) -> List[AssembledContig]:
    """Parse an assembler's FASTA output into AssembledContigs tagged with the accession."""
    out = []
    for rec in SeqIO.parse(io.StringIO(fasta.decode()), "fasta"):
        seq = str(rec.seq).upper()
        m = VELVET_HEADER.search(rec.id)
        if m:
            length, coverage = int(m.group(1)), float(m.group(2))
        else:
            length, coverage = len(seq), 0.0
        out.append(AssembledContig(accession=accession, name=rec.id, sequence=seq,
                                   length=length, coverage=coverage))
    return out


class CacheStatus(enum.Enum):
    CACHED = "cached"
    NEEDS_ASSEMBLY = "needs_assembly"


@dataclass(frozen=True)
class CacheDecision:
    status: CacheStatus
    path: Optional[str] = None

    @property
    def cached(self) -> bool:
        return self.status is CacheStatus.CACHED


def contig_cache_path(cache_location: str, accession: str) -> str:
    return join_location(cache_location, f"{accession}{CONTIG_SUFFIX}")


def resolve_cached_contigs(accession: str,
                           cache_location: Optional[str],
                           store: ObjectStore,
                           force: bool = False) -> CacheDecision:
    """
    Decide whether the accession's contigs can be read from the cache.

    force always asks for assembly; so does a run with no cache location.
    Existence-check failures are reported as StorageError for this accession only.
    """
    if force or cache_location is None:
        return CacheDecision(CacheStatus.NEEDS_ASSEMBLY)
    path = contig_cache_path(cache_location, accession)
    try:
        present = store.exists(path)
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(path, e) from e
    if present:
        return CacheDecision(CacheStatus.CACHED, path)
    return CacheDecision(CacheStatus.NEEDS_ASSEMBLY)


class Assembler(Protocol):
    def assemble(self, accession: str) -> bytes:
        """Return the assembled contigs of one accession as FASTA bytes."""
        ...


class VelvetAssembler:
    """
    Assemble an accession with the SRA toolkit and velvet:

      fastq-dump --outdir <tmp>/reads <accession>
      velveth <tmp>/velvet <hash_length> -fastq -short <tmp>/reads/<accession>.fastq
      velvetg <tmp>/velvet -cov_cutoff auto

    Both tool sets must be on PATH. Scratch space is removed afterwards.
    """

    def __init__(self, hash_length: int = 31, scratch_dir: Optional[Path] = None):
        self.hash_length = hash_length
        self.scratch_dir = scratch_dir

    def _run(self, cmd: List[str]) -> None:
        LOGGER.debug("Running: %s", " ".join(cmd))
        subprocess.run(cmd, check=True, capture_output=True)

    def assemble(self, accession: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix=f"{accession}_", dir=self.scratch_dir) as tmp:
            tmp = Path(tmp)
            reads_dir, velvet_dir = tmp / "reads", tmp / "velvet"
            self._run(["fastq-dump", "--outdir", str(reads_dir), accession])
            self._run(["velveth", str(velvet_dir), str(self.hash_length),
                       "-fastq", "-short", str(reads_dir / f"{accession}.fastq")])
            self._run(["velvetg", str(velvet_dir), "-cov_cutoff", "auto"])
            return (velvet_dir / "contigs.fa").read_bytes()


@dataclass
class AssemblyOutcome:
    accession: str
    contigs: List[AssembledContig]
    from_cache: bool
    cache_path: Optional[str] = None


class AssemblyStage:
    """Cache-gated assembly of single accessions. Does not retry."""

    def __init__(self, assembler: Assembler, store: ObjectStore,
                 cache_location: Optional[str] = None, force: bool = False):
        self.assembler = assembler
        self.store = store
        self.cache_location = cache_location
        self.force = force

    def contigs_for(self, accession: str) -> AssemblyOutcome:
        decision = resolve_cached_contigs(accession, self.cache_location, self.store, self.force)
        if decision.cached:
            LOGGER.info("Using cached contigs for %s: %s", accession, decision.path)
            fasta = self.store.read(decision.path)
            return AssemblyOutcome(accession, parse_contigs(accession, fasta),
                                   from_cache=True, cache_path=decision.path)

        LOGGER.info("Assembling %s", accession)
        try:
            fasta = self.assembler.assemble(accession)
        except AssemblyError:
            raise
        except Exception as e:
            raise AssemblyError(accession, e) from e
        contigs = parse_contigs(accession, fasta)
        LOGGER.info("Assembled %s into %d contigs", accession, len(contigs))

        path = None
        if self.cache_location is not None:
            path = contig_cache_path(self.cache_location, accession)
            self.store.write(path, fasta)
        return AssemblyOutcome(accession, contigs, from_cache=False, cache_path=path)
