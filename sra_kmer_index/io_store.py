"""
Object-store access for the contig cache and the k-mer index outputs.

Local paths are handled with pathlib; s3:// goes through the aws CLI and
gs:// through gsutil, piping object bodies over stdin/stdout.
Every failure surfaces as StorageError carrying the path. An existence
check answers False only when the CLI reports the object missing; auth,
network and other CLI errors raise.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol

from .errors import StorageError
from .log import get_logger

LOGGER = get_logger("io_store")

# stderr fragments the CLIs emit for a missing object
NOT_FOUND_MARKERS = ("No URLs matched", "NotFound", "Not Found", "404", "does not exist")


class ObjectStore(Protocol):
    def exists(self, path: str) -> bool:
        ...

    def read(self, path: str) -> bytes:
        ...

    def write(self, path: str, data: bytes) -> None:
        ...


class LocalObjectStore:
    def exists(self, path: str) -> bool:
        return Path(path).is_file()

    def read(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise StorageError(path, e) from e

    def write(self, path: str, data: bytes) -> None:
        p = Path(path)
        tmp = None
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            # one temp file per writer; readers see either the old file or a complete new one
            with tempfile.NamedTemporaryFile(dir=p.parent, prefix=f".{p.name}.",
                                             suffix=".tmp", delete=False) as fh:
                tmp = fh.name
                fh.write(data)
            os.replace(tmp, p)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise StorageError(path, e) from e
        LOGGER.debug("Wrote %s bytes to %s", f"{len(data):,}", p)


class _CliObjectStore:
    """Shared subprocess plumbing for the cloud CLIs."""

    def _exists_cmd(self, path: str) -> List[str]:
        raise NotImplementedError

    def _cat_cmd(self, path: str) -> List[str]:
        raise NotImplementedError

    def _put_cmd(self, path: str) -> List[str]:
        raise NotImplementedError

    def _run(self, cmd: List[str], path: str, data: Optional[bytes] = None) -> bytes:
        try:
            proc = subprocess.run(cmd, input=data, capture_output=True, check=True)
        except (subprocess.CalledProcessError, OSError) as e:
            raise StorageError(path, e) from e
        return proc.stdout

    def _stat(self, path: str) -> Optional[bytes]:
        """Run the existence command; its stdout if it succeeded, None if the object is missing."""
        cmd = self._exists_cmd(path)
        try:
            proc = subprocess.run(cmd, capture_output=True)
        except OSError as e:
            raise StorageError(path, e) from e
        if proc.returncode == 0:
            return proc.stdout
        err = (proc.stderr or b"").decode(errors="replace").strip()
        if not err or any(m in err for m in NOT_FOUND_MARKERS):
            return None
        raise StorageError(path, subprocess.CalledProcessError(proc.returncode, cmd, stderr=err))

    def exists(self, path: str) -> bool:
        return self._stat(path) is not None

    def read(self, path: str) -> bytes:
        LOGGER.debug("Reading: %s", path)
        return self._run(self._cat_cmd(path), path)

    def write(self, path: str, data: bytes) -> None:
        LOGGER.info("Uploading %s bytes -> %s", f"{len(data):,}", path)
        self._run(self._put_cmd(path), path, data=data)


class S3ObjectStore(_CliObjectStore):
    def __init__(self, no_sign_request: bool = False):
        self.extra = ["--no-sign-request"] if no_sign_request else []

    def _exists_cmd(self, path: str) -> List[str]:
        return ["aws", "s3", "ls", path] + self.extra

    def _cat_cmd(self, path: str) -> List[str]:
        return ["aws", "s3", "cp", path, "-"] + self.extra

    def _put_cmd(self, path: str) -> List[str]:
        return ["aws", "s3", "cp", "-", path] + self.extra

    def exists(self, path: str) -> bool:
        # 'aws s3 ls' matches key prefixes too, so look for the exact name
        listing = self._stat(path)
        if listing is None:
            return False
        name = path.rstrip("/").rsplit("/", 1)[-1]
        for line in listing.decode().splitlines():
            if line.split()[-1:] == [name]:
                return True
        return False


class GcsObjectStore(_CliObjectStore):
    def _exists_cmd(self, path: str) -> List[str]:
        return ["gsutil", "-q", "stat", path]

    def _cat_cmd(self, path: str) -> List[str]:
        return ["gsutil", "cat", path]

    def _put_cmd(self, path: str) -> List[str]:
        return ["gsutil", "cp", "-", path]


def location_scheme(location: str) -> str:
    for scheme in ("s3://", "gs://"):
        if location.startswith(scheme):
            return scheme
    return "file"


def same_backend(a: str, b: str) -> bool:
    return location_scheme(a) == location_scheme(b)


def open_object_store(location: str, no_sign_request: bool = False) -> ObjectStore:
    scheme = location_scheme(location)
    if scheme == "s3://":
        return S3ObjectStore(no_sign_request=no_sign_request)
    if scheme == "gs://":
        return GcsObjectStore()
    return LocalObjectStore()


def read_accessions(location: str, store: ObjectStore) -> List[str]:
    """Read an accession list: one per line, blank lines and '#' comments skipped."""
    text = store.read(location).decode()
    accessions = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if line and line not in accessions:
            accessions.append(line)
    LOGGER.info("Loaded %d accessions from %s", len(accessions), location)
    return accessions
