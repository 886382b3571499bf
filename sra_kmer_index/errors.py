"""
Exception taxonomy for the k-mer index and variant-request pipelines.

Configuration-time errors (ParseError, InvalidRangeError, InvalidKValueError)
abort a run before any work unit starts. Per-unit errors (AssemblyError,
StorageError) are attached to the failing unit and do not stop its siblings.
"""

from __future__ import annotations

from typing import Optional


class SraKmerIndexError(Exception):
    """Base class for every error raised by this package."""


class InvalidRangeError(SraKmerIndexError, ValueError):
    pass


class ParseError(SraKmerIndexError, ValueError):
    def __init__(self, message: str, token: Optional[str] = None):
        self.token = token
        if token is not None:
            message = f"{message}: {token!r}"
        super().__init__(message)


class InvalidKValueError(SraKmerIndexError, ValueError):
    def __init__(self, k):
        self.k = k
        super().__init__(f"K values must be between 1 and 256, got {k!r}")


class AssemblyError(SraKmerIndexError):
    def __init__(self, accession: str, cause: BaseException):
        self.accession = accession
        self.cause = cause
        super().__init__(f"assembly failed for {accession}: {cause}")


class StorageError(SraKmerIndexError):
    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"storage operation failed for {path}: {cause}")
