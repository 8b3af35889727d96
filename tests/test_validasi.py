import json
from datetime import date

from sinkron.dataset import build_index
from sinkron.laporan import RunSummary
from sinkron.validasi import LinkValidator, StagingValidator, read_staging_json

TMT = date(2020, 3, 1)


def staging(tmp_path, records, nip="12345"):
    data_dir = tmp_path / "data"
    data_dir.mkdir(exist_ok=True)
    (tmp_path / "files").mkdir(exist_ok=True)
    (data_dir / f"{nip}.json").write_text(json.dumps({"data": records}))
    return data_dir


def validator(tmp_path, summary):
    return StagingValidator(summary, staging_data_dir=tmp_path / "data",
                            staging_files_dir=tmp_path / "files", dataset_filename="1-final.json")


def riwayat(record_id="r1", **extra):
    raw = {"id": record_id, "tmtJabatan": "01-03-2020", "path": {"872": {"dok_uri": "dok/sk.pdf"}}}
    raw.update(extra)
    return raw


def test_read_staging_json_flags_missing_data_array(tmp_path):
    path = tmp_path / "a.json"
    path.write_text(json.dumps({"pesan": "x"}))

    records, problem = read_staging_json(path)

    assert records is None
    assert "data" in problem


def test_staging_validator_accepts_complete_record(tmp_path):
    staging(tmp_path, [riwayat()])
    (tmp_path / "files" / "r1_872_sk.pdf").write_bytes(b"%PDF-1.4")
    summary = RunSummary("validate-staging")

    validator(tmp_path, summary).run()

    assert summary.counters["dokumen_ok"] == 1
    assert summary.exit_code == 0


def test_staging_validator_reports_missing_and_empty_files(tmp_path):
    staging(tmp_path, [riwayat(), riwayat("r2", path={"873": {"dok_uri": "dok/spp.pdf"}})])
    (tmp_path / "files" / "r2_873_spp.pdf").write_bytes(b"")
    summary = RunSummary("validate-staging")

    validator(tmp_path, summary).run()

    assert summary.errors["filesystem"] == 2


def test_staging_validator_warns_on_non_pdf_header(tmp_path):
    staging(tmp_path, [riwayat()])
    (tmp_path / "files" / "r1_872_sk.pdf").write_bytes(b"<html>error</html>")
    summary = RunSummary("validate-staging")

    validator(tmp_path, summary).run()

    assert summary.counters["peringatan"] == 1
    assert summary.exit_code == 0


def test_staging_validator_rejects_bad_tmt(tmp_path):
    staging(tmp_path, [riwayat(tmtJabatan="2020-03-01", path={})])
    summary = RunSummary("validate-staging")

    validator(tmp_path, summary).run()

    assert summary.errors["input"] == 1


def test_staging_validator_skips_dataset_file_and_filters_ids(tmp_path):
    staging(tmp_path, [riwayat(path={}), riwayat("r2", path={})])
    (tmp_path / "data" / "1-final.json").write_text("{rusak")
    summary = RunSummary("validate-staging")

    validator(tmp_path, summary).run(record_ids={"r2", "r9"})

    assert summary.counters["file_diperiksa"] == 1
    assert summary.counters["record_diperiksa"] == 1
    assert summary.error_details == [("lookup", "r9", "ID record tidak ditemukan di JSON staging")]


def test_link_validator_passes_healthy_links(session, factory):
    pegawai = factory.pegawai("12345")
    dokumen = factory.dokumen(pegawai, "sk.pdf")
    factory.jabatan(pegawai, TMT, file_id=dokumen.id)
    session.commit()
    summary = RunSummary("validate-links")

    LinkValidator(session, summary).run()

    assert summary.counters["tautan_ok"] == 1
    assert summary.exit_code == 0


def test_link_validator_reports_status_path_and_missing_record(session, factory):
    pegawai = factory.pegawai("12345")
    inactive = factory.dokumen(pegawai, "nonaktif.pdf", status=0)
    missing = factory.dokumen(pegawai, "hilang.pdf", content=None)
    factory.jabatan(pegawai, TMT, file_id=inactive.id, file_spp=missing.id, file_ba=999)
    session.commit()
    summary = RunSummary("validate-links")

    LinkValidator(session, summary).run()

    assert summary.errors["lookup"] == 2
    assert summary.errors["filesystem"] == 1
    assert summary.exit_code == 1


def test_link_validator_checks_can_be_disabled(session, factory):
    pegawai = factory.pegawai("12345")
    inactive = factory.dokumen(pegawai, "nonaktif.pdf", status=0, content=None)
    factory.jabatan(pegawai, TMT, file_id=inactive.id)
    session.commit()
    summary = RunSummary("validate-links")

    LinkValidator(session, summary, check_fs=False, check_status=False).run()

    assert summary.exit_code == 0


def test_link_validator_reports_unlinked_dataset_document(session, factory):
    pegawai = factory.pegawai("12345")
    factory.jabatan(pegawai, TMT)
    session.commit()
    index = build_index([{"id": "r1", "nipBaru": "12345", "tmtJabatan": "01-03-2020",
                          "path": {"873": {"dok_uri": "dok/spp.pdf"}}}])
    summary = RunSummary("validate-links")

    LinkValidator(session, summary).run(dataset_index=index)

    assert summary.error_details[0][2] == "dokumen spPelantikan ada di dataset tapi tidak tertaut"
