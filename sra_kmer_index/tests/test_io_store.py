import subprocess
import threading

import pytest

from sra_kmer_index.errors import StorageError
from sra_kmer_index.io_store import (GcsObjectStore, LocalObjectStore, S3ObjectStore,
                                     open_object_store, read_accessions)

from conftest import MemoryStore


def test_local_store_roundtrip(tmp_path):
    store = LocalObjectStore()
    path = str(tmp_path / "out" / "contigs" / "SRR1.fasta")
    assert not store.exists(path)
    store.write(path, b">a\nACGT\n")
    assert store.exists(path)
    assert store.read(path) == b">a\nACGT\n"
    store.write(path, b">b\nTTTT\n")
    assert store.read(path) == b">b\nTTTT\n"


def test_local_read_missing_raises(tmp_path):
    with pytest.raises(StorageError) as exc:
        LocalObjectStore().read(str(tmp_path / "missing.fasta"))
    assert "missing.fasta" in exc.value.path


def test_open_object_store_by_scheme():
    assert isinstance(open_object_store("s3://bucket/x"), S3ObjectStore)
    assert isinstance(open_object_store("gs://bucket/x"), GcsObjectStore)
    assert isinstance(open_object_store("/tmp/x"), LocalObjectStore)


def test_s3_exists_requires_exact_key(monkeypatch):
    listing = b"2024-01-01 00:00:00       1234 SRR1.fasta\n2024-01-01 00:00:00 99 SRR10.fasta\n"

    def fake_run(cmd, capture_output=True, **kw):
        return subprocess.CompletedProcess(cmd, 0, stdout=listing, stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)
    store = S3ObjectStore()
    assert store.exists("s3://bucket/contigs/SRR1.fasta")
    assert not store.exists("s3://bucket/contigs/SRR1.fas")


def test_cli_store_wraps_failures(monkeypatch):
    def fake_run(cmd, **kw):
        raise subprocess.CalledProcessError(1, cmd, stderr=b"AccessDenied")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(StorageError) as exc:
        GcsObjectStore().read("gs://bucket/x.fasta")
    assert exc.value.path == "gs://bucket/x.fasta"


def test_read_accessions_skips_comments_and_repeats():
    store = MemoryStore({"list.txt": b"# header\nSRR1\n  SRR2  # second\n\nSRR1\n"})
    assert read_accessions("list.txt", store) == ["SRR1", "SRR2"]


def test_local_store_concurrent_writers(tmp_path):
    store = LocalObjectStore()
    path = str(tmp_path / "contigs" / "SRR1.fasta")
    payloads = [b">NODE_1\n" + b"A" * 20000 + b"\n", b">NODE_1\n" + b"C" * 20000 + b"\n"]
    errors = []

    def writer(data):
        for _ in range(40):
            try:
                store.write(path, data)
            except StorageError as e:
                errors.append(e)

    threads = [threading.Thread(target=writer, args=(d,)) for d in payloads]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.read(path) in payloads
    assert [p.name for p in (tmp_path / "contigs").iterdir()] == ["SRR1.fasta"]


@pytest.mark.parametrize("store,path", [
    (GcsObjectStore(), "gs://bucket/contigs/SRR1.fasta"),
    (S3ObjectStore(), "s3://bucket/contigs/SRR1.fasta"),
])
def test_cli_exists_raises_on_access_errors(monkeypatch, store, path):
    def fake_run(cmd, capture_output=True, **kw):
        return subprocess.CompletedProcess(
            cmd, 1, stdout=b"", stderr=b"AccessDeniedException: 403 caller does not have access")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(StorageError) as exc:
        store.exists(path)
    assert exc.value.path == path


@pytest.mark.parametrize("stderr", [b"", b"CommandException: No URLs matched: gs://bucket/x"])
def test_cli_exists_false_when_object_missing(monkeypatch, stderr):
    def fake_run(cmd, capture_output=True, **kw):
        return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=stderr)

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert GcsObjectStore().exists("gs://bucket/x") is False
    assert S3ObjectStore().exists("s3://bucket/x") is False
