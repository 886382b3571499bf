"""
Drive the SRA assembly -> contig filter -> k-mer index pipeline.

Work is laid out as explicit unit lists and dispatched to an executor:

  assembly units   one per accession          (threads; the work is external tools + I/O)
  k-mer units      one per (k, contig chunk)  (processes; pure CPU)

A failing unit is recorded and its siblings carry on. The index for a k
value is written only once every chunk of that k has been counted; if any
chunk failed, that k is reported as failed and nothing is written for it.
Other k values are unaffected.

With parallel <= 1 everything runs in-process.
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .assembly import AssembledContig, Assembler, AssemblyOutcome, AssemblyStage, VelvetAssembler
from .config import PipelineOptions, join_location
from .contig_filter import filter_contigs, keep_contig
from .errors import ParseError
from .index_writer import KmerCounts, write_contig_report, write_kmer_index
from .io_store import ObjectStore, open_object_store, read_accessions, same_backend
from .kmers import count_kmers
from .log import get_logger

LOGGER = get_logger("pipeline")


@dataclass
class UnitFailure:
    unit: str
    error: BaseException

    def describe(self) -> str:
        return f"{self.unit}: {type(self.error).__name__}: {self.error}"


@dataclass
class PipelineResult:
    outputs: Dict[int, str] = field(default_factory=dict)
    assembled: List[str] = field(default_factory=list)
    cached: List[str] = field(default_factory=list)
    contigs_total: int = 0
    contigs_kept: int = 0
    report_path: Optional[str] = None
    failures: List[UnitFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# Assembly units
# ---------------------------------------------------------------------------

def run_assembly(accessions: Sequence[str], stage: AssemblyStage,
                 parallel: int = 1) -> Tuple[List[AssemblyOutcome], List[UnitFailure]]:
    """
    Resolve contigs for every accession. Outcomes come back in accession
    order regardless of completion order.
    """
    slots: List[Optional[AssemblyOutcome]] = [None] * len(accessions)
    failures: List[UnitFailure] = []

    def record_failure(acc: str, e: Exception):
        LOGGER.error("Accession %s failed: %s", acc, e)
        failures.append(UnitFailure(f"accession {acc}", e))

    if parallel <= 1:
        for i, acc in enumerate(tqdm(accessions, desc="assembling")):
            try:
                slots[i] = stage.contigs_for(acc)
            except Exception as e:
                record_failure(acc, e)
    else:
        with ThreadPoolExecutor(max_workers=parallel) as ex:
            futs = {ex.submit(stage.contigs_for, acc): i for i, acc in enumerate(accessions)}
            for fut in tqdm(as_completed(futs), total=len(futs), desc="assembling"):
                i = futs[fut]
                try:
                    slots[i] = fut.result()
                except Exception as e:
                    record_failure(accessions[i], e)

    return [o for o in slots if o is not None], failures


# ---------------------------------------------------------------------------
# K-mer units
# ---------------------------------------------------------------------------

def plan_kmer_units(contigs: Sequence[AssembledContig], k_values: Sequence[int],
                    chunk_size: int) -> List[Tuple[int, int, List[AssembledContig]]]:
    """Split the surviving contigs into (unit index, k, chunk) work items, k-major."""
    units = []
    for k in k_values:
        for lo in range(0, len(contigs), chunk_size):
            units.append((len(units), k, list(contigs[lo:lo + chunk_size])))
    return units


def _count_unit(args):
    """
    Top-level worker (picklable) for ProcessPoolExecutor.
    Args:
      args: tuple (idx:int, k:int, contigs:list[AssembledContig])
    Returns:
      (idx, k, KmerCounts)
    """
    idx, k, contigs = args
    return idx, k, count_kmers(contigs, k)


def run_kmer_passes(contigs: Sequence[AssembledContig], k_values: Sequence[int],
                    parallel: int = 1,
                    chunk_size: int = 64,
                    on_pass_done: Optional[Callable[[int, KmerCounts], None]] = None,
                    ) -> Tuple[Dict[int, KmerCounts], List[UnitFailure]]:
    """
    Count k-mers for every k. Returns merged counts for each k whose chunks
    all succeeded, plus a failure per k that lost a chunk.

    Each k is settled as soon as its own last chunk finishes: on_pass_done(k,
    counts) runs then, while chunks of other k values may still be pending.
    """
    units = plan_kmer_units(contigs, k_values, chunk_size)
    remaining: Dict[int, int] = {k: 0 for k in k_values}
    for _, k, _ in units:
        remaining[k] += 1
    partials: Dict[int, List[KmerCounts]] = {k: [] for k in k_values}
    failed: Dict[int, BaseException] = {}
    merged: Dict[int, KmerCounts] = {}
    failures: List[UnitFailure] = []

    def settle(k: int):
        if k in failed:
            LOGGER.error("K-mer pass k=%d failed: %s", k, failed[k])
            failures.append(UnitFailure(f"k={k}", failed[k]))
            return
        merged[k] = KmerCounts.combine(partials.pop(k))
        if on_pass_done is not None:
            on_pass_done(k, merged[k])

    def unit_done(k: int, counts: Optional[KmerCounts] = None,
                  error: Optional[BaseException] = None):
        if error is not None:
            failed.setdefault(k, error)
        else:
            partials[k].append(counts)
        remaining[k] -= 1
        if remaining[k] == 0:
            settle(k)

    # nothing survived filtering for these k values
    for k in k_values:
        if remaining[k] == 0:
            settle(k)

    if parallel <= 1:
        for t in tqdm(units, desc="counting k-mers"):
            try:
                _, k, counts = _count_unit(t)
            except Exception as e:
                unit_done(t[1], error=e)
            else:
                unit_done(k, counts)
    else:
        with ProcessPoolExecutor(max_workers=parallel) as ex:
            futs = {ex.submit(_count_unit, t): t for t in units}
            for fut in tqdm(as_completed(futs), total=len(futs), desc="counting k-mers"):
                t = futs[fut]
                try:
                    _, k, counts = fut.result()
                except Exception as e:
                    unit_done(t[1], error=e)
                else:
                    unit_done(k, counts)

    return merged, failures


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def _report_rows(outcomes: Sequence[AssemblyOutcome], options: PipelineOptions) -> List[Dict]:
    rows = []
    for o in outcomes:
        for c in o.contigs:
            rows.append({
                "accession": c.accession,
                "contig": c.name,
                "length": c.length,
                "coverage": c.coverage,
                "kept": keep_contig(c.length, c.coverage,
                                    options.length_threshold, options.coverage_threshold),
            })
    return rows


def run_pipeline(options: PipelineOptions,
                 store: Optional[ObjectStore] = None,
                 assembler: Optional[Assembler] = None,
                 accessions: Optional[Sequence[str]] = None,
                 cache_store: Optional[ObjectStore] = None) -> PipelineResult:
    """
    Run the whole pipeline for the options. Configuration errors raise before
    any work starts; everything after that is reported in the result.

    'store' serves the output location. The contig cache gets its own store
    when options.cache_location lives on a different backend (e.g. a gs://
    staging location with a local output directory).
    """
    options.check_args()
    k_values = options.parse_k_values()
    store = store if store is not None else open_object_store(options.output_location)
    if cache_store is None:
        cache_location = options.cache_location
        if cache_location is None or same_backend(cache_location, options.output_location):
            cache_store = store
        else:
            cache_store = open_object_store(cache_location)
    assembler = assembler if assembler is not None else VelvetAssembler()

    if accessions is None:
        if not options.accessions_file:
            raise ParseError("an accession list is required")
        acc_store = open_object_store(options.accessions_file)
        accessions = read_accessions(options.accessions_file, acc_store)
    accessions = list(dict.fromkeys(accessions))

    LOGGER.info("Starting pipeline: %d accessions, k values %s, output %s",
                len(accessions), ",".join(map(str, k_values)), options.output_location)

    result = PipelineResult()
    stage = AssemblyStage(assembler, cache_store, options.cache_location, options.force_assembly)
    outcomes, failures = run_assembly(accessions, stage, options.parallel)
    result.failures.extend(failures)
    for o in outcomes:
        (result.cached if o.from_cache else result.assembled).append(o.accession)

    contigs = [c for o in outcomes for c in o.contigs]
    kept = filter_contigs(contigs, options.length_threshold, options.coverage_threshold)
    result.contigs_total, result.contigs_kept = len(contigs), len(kept)

    if options.contig_report:
        path = join_location(options.output_location, f"{options.output_prefix}.contigs.parquet")
        try:
            result.report_path = write_contig_report(_report_rows(outcomes, options), store, path)
        except Exception as e:
            LOGGER.error("Contig report failed: %s", e)
            result.failures.append(UnitFailure("contig report", e))

    def write_pass(k: int, counts: KmerCounts):
        try:
            result.outputs[k] = write_kmer_index(counts, store, options.output_location,
                                                 options.output_prefix, k, options.write_table)
        except Exception as e:
            LOGGER.error("Writing k=%d index failed: %s", k, e)
            result.failures.append(UnitFailure(f"k={k}", e))

    _, failures = run_kmer_passes(kept, k_values, options.parallel, options.chunk_size,
                                  on_pass_done=write_pass)
    result.failures.extend(failures)

    LOGGER.info("Pipeline finished: %d assembled, %d cached, %d/%d contigs kept, %d outputs, %d failures",
                len(result.assembled), len(result.cached), result.contigs_kept,
                result.contigs_total, len(result.outputs), len(result.failures))
    return result
