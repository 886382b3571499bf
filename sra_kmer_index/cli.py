"""
Command-line interface for building k-mer indices from assembled SRA accessions
and for planning sharded variant-search requests.

Examples:

# 1) Assemble accessions (reusing cached contigs) and index them at k=21 and 31:
python -m sra_kmer_index.cli index \
  --accessions gs://my-bucket/sra_accessions.txt \
  --output-location gs://my-bucket/kmer_index \
  --k-values 21,31 --length-threshold 500 --coverage-threshold 5 \
  --output-contigs --parallel 8

  -> gs://my-bucket/kmer_index/KmerIndexK21.txt, .../KmerIndexK31.txt
     (or .csv with --write-table)

# 2) Shard BRCA1 into 100 kb variant requests:
python -m sra_kmer_index.cli variant-requests \
  --references 17:41196311:41277499 --bases-per-shard 100000

# 3) Shard every autosome listed in a .fai index:
python -m sra_kmer_index.cli variant-requests --all-contigs --contig-index GRCh37.fa.fai
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .assembly import VelvetAssembler
from .config import (BRCA1, COVERAGE_THRESHOLD_UNSET, DEFAULT_BASES_PER_SHARD, DEFAULT_CHUNK_SIZE,
                     DEFAULT_DATASET_ID, DEFAULT_OUTPUT_PREFIX, LENGTH_THRESHOLD_UNSET,
                     PipelineOptions)
from .errors import SraKmerIndexError
from .io_store import open_object_store, same_backend
from .log import get_logger, set_verbose
from .pipeline import run_pipeline
from .variant_requests import FaiContigCatalog, variant_requests_for_options

LOGGER = get_logger("cli")

EXIT_UNIT_FAILURES = 1
EXIT_BAD_CONFIG = 2


def cmd_index(args) -> int:
    options = PipelineOptions(
        output_location=args.output_location,
        accessions_file=args.accessions,
        k_values=args.k_values,
        output_prefix=args.output_prefix,
        staging_location=args.staging_location,
        write_table=args.write_table,
        output_contigs=args.output_contigs,
        force_assembly=args.force_assembly,
        length_threshold=args.length_threshold,
        coverage_threshold=args.coverage_threshold,
        parallel=args.parallel,
        chunk_size=args.chunk_size,
        contig_report=args.contig_report,
    )
    try:
        options.check_args()
    except SraKmerIndexError as e:
        LOGGER.error("Invalid options: %s", e)
        return EXIT_BAD_CONFIG

    store = open_object_store(options.output_location, no_sign_request=args.no_sign_request)
    cache_store = None
    if options.cache_location and not same_backend(options.cache_location, options.output_location):
        cache_store = open_object_store(options.cache_location, no_sign_request=args.no_sign_request)
    assembler = VelvetAssembler(hash_length=args.hash_length,
                                scratch_dir=Path(args.scratch_dir) if args.scratch_dir else None)
    try:
        result = run_pipeline(options, store=store, assembler=assembler, cache_store=cache_store)
    except SraKmerIndexError as e:
        LOGGER.error("Pipeline aborted: %s", e)
        return EXIT_BAD_CONFIG

    for k, path in sorted(result.outputs.items()):
        LOGGER.info("k=%d -> %s", k, path)
    if result.failures:
        LOGGER.error("%d unit(s) failed:", len(result.failures))
        for f in result.failures:
            LOGGER.error("  %s", f.describe())
        return EXIT_UNIT_FAILURES
    return 0


def cmd_variant_requests(args) -> int:
    options = PipelineOptions(
        output_location=args.output or "-",
        dataset_id=args.dataset_id,
        references=args.references,
        all_contigs=args.all_contigs,
        exclude_xy=not args.include_xy,
        bases_per_shard=args.bases_per_shard,
    )
    catalog = FaiContigCatalog(Path(args.contig_index)) if args.contig_index else None
    try:
        requests = variant_requests_for_options(options, catalog)
    except SraKmerIndexError as e:
        LOGGER.error("Invalid options: %s", e)
        return EXIT_BAD_CONFIG

    out = open(args.output, "w") if args.output else sys.stdout
    try:
        for req in requests:
            out.write(json.dumps(req.to_dict()) + "\n")
    finally:
        if out is not sys.stdout:
            out.close()
    LOGGER.info("Planned %d requests", len(requests))
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="sra_kmer_index")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_idx = sub.add_parser("index", help="Assemble SRA accessions and build k-mer indices.")
    ap_idx.add_argument("--accessions", required=True,
                        help="List of SRA accessions, one per line (local path, s3:// or gs://).")
    ap_idx.add_argument("--output-location", required=True, help="Directory/prefix to write results to.")
    ap_idx.add_argument("--k-values", required=True,
                        help="K values to index, comma separated, each in 1..256 (e.g. 21,31).")
    ap_idx.add_argument("--output-prefix", default=DEFAULT_OUTPUT_PREFIX,
                        help="Output files are <prefix>K<k>.csv/txt (default KmerIndex).")
    ap_idx.add_argument("--write-table", action="store_true",
                        help="Write indices as a kmer x accession table (.csv) instead of entries (.txt).")
    ap_idx.add_argument("--output-contigs", action="store_true",
                        help="Keep assembled contigs under <output-location>/contigs for reuse.")
    ap_idx.add_argument("--staging-location", default=None,
                        help="Contig cache location used when --output-contigs is not set.")
    ap_idx.add_argument("--force-assembly", action="store_true",
                        help="Assemble every accession even if cached contigs exist.")
    ap_idx.add_argument("--length-threshold", type=int, default=LENGTH_THRESHOLD_UNSET,
                        help="Drop contigs with length <= this.")
    ap_idx.add_argument("--coverage-threshold", type=float, default=COVERAGE_THRESHOLD_UNSET,
                        help="Drop contigs with coverage < this.")
    ap_idx.add_argument("--parallel", type=int, default=1, help="Parallel workers.")
    ap_idx.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE,
                        help="Contigs per k-mer work unit.")
    ap_idx.add_argument("--contig-report", action="store_true",
                        help="Also write <prefix>.contigs.parquet summarising every contig.")
    ap_idx.add_argument("--hash-length", type=int, default=31, help="velveth hash length.")
    ap_idx.add_argument("--scratch-dir", default=None, help="Scratch space for assemblies.")
    ap_idx.add_argument("--no-sign-request", action="store_true",
                        help="Anonymous access for s3:// locations.")
    ap_idx.set_defaults(func=cmd_index)

    ap_req = sub.add_parser("variant-requests", help="Print sharded variant-search requests as JSON lines.")
    ap_req.add_argument("--dataset-id", default=DEFAULT_DATASET_ID, help="Variant dataset id.")
    ap_req.add_argument("--references", default=BRCA1,
                        help="Comma separated reference:start:end tuples (default BRCA1).")
    ap_req.add_argument("--all-contigs", action="store_true",
                        help="Use every contig from --contig-index instead of --references.")
    ap_req.add_argument("--contig-index", default=None, help=".fai index listing the dataset's contigs.")
    ap_req.add_argument("--include-xy", action="store_true", help="Keep X and Y with --all-contigs.")
    ap_req.add_argument("--bases-per-shard", type=int, default=DEFAULT_BASES_PER_SHARD,
                        help="Maximum shard width in bases.")
    ap_req.add_argument("--output", default=None, help="Write to this file instead of stdout.")
    ap_req.set_defaults(func=cmd_variant_requests)
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    set_verbose(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
