import pytest

from sra_kmer_index.assembly import AssembledContig
from sra_kmer_index.config import PipelineOptions
from sra_kmer_index.errors import InvalidKValueError
from sra_kmer_index.io_store import LocalObjectStore
from sra_kmer_index.kmers import generate_kmers
from sra_kmer_index import pipeline
from sra_kmer_index.pipeline import plan_kmer_units, run_kmer_passes, run_pipeline

from conftest import FakeAssembler, MemoryStore, random_dna, velvet_fasta

OUT = "gs://bucket/out"


def options(**kw):
    base = dict(output_location=OUT, k_values="3,21", output_prefix="Prefix",
                length_threshold=50, output_contigs=True)
    base.update(kw)
    return PipelineOptions(**base)


def test_end_to_end_entries(store, two_accessions):
    assembler = FakeAssembler(two_accessions)
    result = run_pipeline(options(), store=store, assembler=assembler, accessions=["SRR1", "SRR2"])

    assert result.ok
    assert result.contigs_total == 2 and result.contigs_kept == 1
    assert result.outputs == {3: f"{OUT}/PrefixK3.txt", 21: f"{OUT}/PrefixK21.txt"}

    lines = store.files[f"{OUT}/PrefixK3.txt"].decode().splitlines()
    # only SRR2's 80 bp contig survives; k=3 gives 78 windows
    assert sum(int(line.split("\t")[2]) for line in lines) == 78
    assert {line.split("\t")[1] for line in lines} == {"SRR2"}

    lines21 = store.files[f"{OUT}/PrefixK21.txt"].decode().splitlines()
    assert sum(int(line.split("\t")[2]) for line in lines21) == 60


def test_end_to_end_table(store, two_accessions):
    result = run_pipeline(options(write_table=True), store=store,
                          assembler=FakeAssembler(two_accessions), accessions=["SRR1", "SRR2"])
    assert sorted(result.outputs.values()) == [f"{OUT}/PrefixK21.csv", f"{OUT}/PrefixK3.csv"]
    header = store.files[f"{OUT}/PrefixK3.csv"].decode().splitlines()[0]
    assert header == "kmer,SRR2"


def test_contigs_are_cached_between_runs(store, two_accessions):
    assembler = FakeAssembler(two_accessions)
    first = run_pipeline(options(), store=store, assembler=assembler, accessions=["SRR1", "SRR2"])
    assert first.assembled == ["SRR1", "SRR2"]
    assert f"{OUT}/contigs/SRR1.fasta" in store.files
    first_index = store.files[f"{OUT}/PrefixK3.txt"]

    second = run_pipeline(options(), store=store, assembler=assembler, accessions=["SRR1", "SRR2"])
    assert second.cached == ["SRR1", "SRR2"]
    assert assembler.calls == ["SRR1", "SRR2"]
    assert store.files[f"{OUT}/PrefixK3.txt"] == first_index

    forced = run_pipeline(options(force_assembly=True), store=store, assembler=assembler,
                          accessions=["SRR1", "SRR2"])
    assert forced.assembled == ["SRR1", "SRR2"]
    assert assembler.calls == ["SRR1", "SRR2", "SRR1", "SRR2"]


def test_failed_accession_does_not_stop_siblings(store, two_accessions):
    assembler = FakeAssembler(two_accessions, fail=["SRR1"])
    result = run_pipeline(options(length_threshold=10), store=store, assembler=assembler,
                          accessions=["SRR1", "SRR2"])
    assert not result.ok
    assert [f.unit for f in result.failures] == ["accession SRR1"]
    assert "SRR1" in result.failures[0].describe()
    assert result.assembled == ["SRR2"]
    assert set(result.outputs) == {3, 21}


def test_bad_k_aborts_before_assembly(store, two_accessions):
    assembler = FakeAssembler(two_accessions)
    with pytest.raises(InvalidKValueError):
        run_pipeline(options(k_values="3,0"), store=store, assembler=assembler,
                     accessions=["SRR1"])
    assert assembler.calls == []
    assert store.writes == []


def test_contig_report(store, two_accessions):
    result = run_pipeline(options(contig_report=True), store=store,
                          assembler=FakeAssembler(two_accessions), accessions=["SRR1", "SRR2"])
    assert result.report_path == f"{OUT}/Prefix.contigs.parquet"
    assert result.report_path in store.files


def test_accessions_read_from_file(tmp_path, two_accessions):
    acc_file = tmp_path / "sra.txt"
    acc_file.write_text("# run 1\nSRR1\n\nSRR2\n")
    out = tmp_path / "out"
    opts = PipelineOptions(output_location=str(out), accessions_file=str(acc_file),
                           k_values="3", output_prefix="Prefix", length_threshold=50)
    result = run_pipeline(opts, store=LocalObjectStore(), assembler=FakeAssembler(two_accessions))
    assert result.ok
    assert (out / "PrefixK3.txt").exists()
    assert not (out / "contigs").exists()


def test_plan_kmer_units_is_k_major():
    contigs = [AssembledContig("SRR1", f"c{i}", "ACGT", 4, 1.0) for i in range(5)]
    units = plan_kmer_units(contigs, [3, 21], chunk_size=2)
    assert [(idx, k, len(chunk)) for idx, k, chunk in units] == [
        (0, 3, 2), (1, 3, 2), (2, 3, 1), (3, 21, 2), (4, 21, 2), (5, 21, 1),
    ]


def test_chunking_does_not_change_counts():
    contigs = [AssembledContig(f"SRR{i % 3}", f"c{i}", random_dna(60 + i, seed=i), 60 + i, 5.0)
               for i in range(7)]
    whole, _ = run_kmer_passes(contigs, [5], chunk_size=100)
    split, _ = run_kmer_passes(contigs, [5], chunk_size=2)
    assert whole[5] == split[5]
    assert sum(whole[5].as_dict().values()) == sum(len(generate_kmers(c, 5)) for c in contigs)


def test_parallel_matches_sequential(two_accessions):
    seq_store, par_store = MemoryStore(), MemoryStore()
    accs = ["SRR1", "SRR2"]
    run_pipeline(options(length_threshold=10, chunk_size=1), store=seq_store,
                 assembler=FakeAssembler(two_accessions), accessions=accs)
    result = run_pipeline(options(length_threshold=10, chunk_size=1, parallel=2), store=par_store,
                          assembler=FakeAssembler(two_accessions), accessions=accs)
    assert result.ok
    for k in (3, 21):
        path = f"{OUT}/PrefixK{k}.txt"
        assert seq_store.files[path] == par_store.files[path]


def test_no_surviving_contigs_still_writes_outputs(store):
    fastas = {"SRR1": velvet_fasta([("ACGTACGT", 1.0)])}
    result = run_pipeline(options(), store=store, assembler=FakeAssembler(fastas), accessions=["SRR1"])
    assert result.contigs_kept == 0
    assert store.files[f"{OUT}/PrefixK3.txt"] == b""


def test_staging_cache_uses_its_own_backend(tmp_path, monkeypatch, two_accessions):
    gcs = MemoryStore()

    def fake_open(location, no_sign_request=False):
        return gcs if location.startswith("gs://") else LocalObjectStore()

    monkeypatch.setattr(pipeline, "open_object_store", fake_open)
    monkeypatch.chdir(tmp_path)
    out = tmp_path / "out"
    opts = PipelineOptions(output_location=str(out), staging_location="gs://bucket/stage",
                           k_values="3")
    assembler = FakeAssembler(two_accessions)
    result = run_pipeline(opts, assembler=assembler, accessions=["SRR1"])

    assert result.ok
    assert set(gcs.files) == {"gs://bucket/stage/contigs/SRR1.fasta"}
    assert [p.name for p in tmp_path.iterdir()] == ["out"]
    assert (out / "KmerIndexK3.txt").exists()

    again = run_pipeline(opts, assembler=assembler, accessions=["SRR1"])
    assert again.cached == ["SRR1"]
    assert assembler.calls == ["SRR1"]


def test_each_k_is_written_once_its_own_chunks_finish(store, two_accessions, monkeypatch):
    events = []
    real_count, real_write = pipeline.count_kmers, pipeline.write_kmer_index

    def counting(contigs, k):
        events.append(("count", k))
        return real_count(contigs, k)

    def writing(counts, store, location, prefix, k, write_table):
        events.append(("write", k))
        return real_write(counts, store, location, prefix, k, write_table)

    monkeypatch.setattr(pipeline, "count_kmers", counting)
    monkeypatch.setattr(pipeline, "write_kmer_index", writing)
    result = run_pipeline(options(length_threshold=10, chunk_size=1), store=store,
                          assembler=FakeAssembler(two_accessions), accessions=["SRR1", "SRR2"])
    assert result.ok
    assert events == [("count", 3), ("count", 3), ("write", 3),
                      ("count", 21), ("count", 21), ("write", 21)]


def test_failed_k_pass_does_not_block_other_k(store, two_accessions, monkeypatch):
    real_count = pipeline.count_kmers

    def flaky(contigs, k):
        if k == 21:
            raise MemoryError("worker ran out of memory")
        return real_count(contigs, k)

    monkeypatch.setattr(pipeline, "count_kmers", flaky)
    result = run_pipeline(options(length_threshold=10), store=store,
                          assembler=FakeAssembler(two_accessions), accessions=["SRR1", "SRR2"])
    assert result.outputs == {3: f"{OUT}/PrefixK3.txt"}
    assert [f.unit for f in result.failures] == ["k=21"]
    assert f"{OUT}/PrefixK21.txt" not in store.files


def test_repeated_accessions_are_processed_once(store, two_accessions):
    assembler = FakeAssembler(two_accessions)
    result = run_pipeline(options(), store=store, assembler=assembler,
                          accessions=["SRR2", "SRR1", "SRR2"])
    assert assembler.calls == ["SRR2", "SRR1"]
    assert result.assembled == ["SRR2", "SRR1"]
    lines = store.files[f"{OUT}/PrefixK3.txt"].decode().splitlines()
    assert sum(int(line.split("\t")[2]) for line in lines) == 78
