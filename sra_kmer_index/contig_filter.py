"""
Length/coverage filtering of assembled contigs.

A contig is dropped when

  length <= length_threshold   or   coverage < coverage_threshold

The comparisons are asymmetric: a contig exactly at the length threshold is
dropped, one exactly at the coverage threshold survives the coverage check.
Thresholds left at their "unset" sentinels disable that check.
Lengths or coverages that are negative, NaN or infinite are always dropped.
"""

from __future__ import annotations

import math
from typing import Iterable, List

from .assembly import AssembledContig
from .config import COVERAGE_THRESHOLD_UNSET, LENGTH_THRESHOLD_UNSET
from .log import get_logger

LOGGER = get_logger("contig_filter")


def _valid_metric(x) -> bool:
    return x is not None and math.isfinite(x) and x >= 0


def keep_contig(length,
                coverage,
                length_threshold: int = LENGTH_THRESHOLD_UNSET,
                coverage_threshold: float = COVERAGE_THRESHOLD_UNSET) -> bool:
    if not (_valid_metric(length) and _valid_metric(coverage)):
        return False
    if length_threshold != LENGTH_THRESHOLD_UNSET and length <= length_threshold:
        return False
    if coverage_threshold != COVERAGE_THRESHOLD_UNSET and coverage < coverage_threshold:
        return False
    return True


def filter_contigs(contigs: Iterable[AssembledContig],
                   length_threshold: int = LENGTH_THRESHOLD_UNSET,
                   coverage_threshold: float = COVERAGE_THRESHOLD_UNSET) -> List[AssembledContig]:
    kept, dropped = [], 0
    for c in contigs:
        if keep_contig(c.length, c.coverage, length_threshold, coverage_threshold):
            kept.append(c)
        else:
            dropped += 1
            LOGGER.debug("Dropping %s/%s (length=%s, coverage=%s)",
                         c.accession, c.name, c.length, c.coverage)
    LOGGER.info("Contig filter kept %d, dropped %d (length > %s, coverage >= %s)",
                len(kept), dropped, length_threshold, coverage_threshold)
    return kept
