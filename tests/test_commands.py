import json
import os
from datetime import date

import openpyxl

from conftest import write_dataset
from models.dokumen import Dokumen
from models.jabatan import RiwayatJabatan
from sinkron.rekonsiliasi import CleanupEngine

TMT = date(2020, 3, 1)


def duplicate_rows(session, factory):
    pegawai = factory.pegawai("12345")
    dokumen = factory.dokumen(pegawai, "sk.pdf")
    factory.jabatan(pegawai, TMT, bkn_id="r1", file_id=dokumen.id)
    factory.jabatan(pegawai, TMT)
    session.commit()
    return dokumen


def test_all_commands_are_registered(app):
    names = set(app.cli.list_commands(None))
    assert {"dedupe-jabatan", "cleanup-files", "restore-files", "fetch", "build-dataset",
            "refetch-documents", "import-jabatan", "validate-staging", "validate-links"} <= names


def test_dedupe_defaults_to_dry_run(app, session, factory):
    duplicate_rows(session, factory)

    result = app.test_cli_runner().invoke(args=["dedupe-jabatan"])

    assert result.exit_code == 0, result.output
    assert session.query(RiwayatJabatan).count() == 2


def test_dedupe_commit_removes_duplicate(app, session, factory):
    dokumen = duplicate_rows(session, factory)

    result = app.test_cli_runner().invoke(args=["dedupe-jabatan", "--commit"])

    assert result.exit_code == 0, result.output
    row = session.query(RiwayatJabatan).one()
    assert row.bkn_id == "r1"
    assert session.get(Dokumen, dokumen.id).status == 1


def test_dedupe_writes_excel_report(app, session, factory, tmp_path):
    duplicate_rows(session, factory)
    report = tmp_path / "laporan" / "dedupe.xlsx"

    result = app.test_cli_runner().invoke(args=["dedupe-jabatan", "--report", str(report)])

    assert result.exit_code == 0, result.output
    workbook = openpyxl.load_workbook(report)
    assert workbook.sheetnames == ["Ringkasan", "Aksi", "Error"]
    kinds = [row[0] for row in workbook["Aksi"].iter_rows(min_row=2, values_only=True)]
    assert "HAPUS_BARIS" in kinds


def test_cleanup_requires_dataset(app):
    result = app.test_cli_runner().invoke(args=["cleanup-files"])

    assert result.exit_code == 1


def test_cleanup_with_dataset_unlinks_dropped_document(app, session, factory, dataset_file):
    pegawai = factory.pegawai("12345")
    dokumen = factory.dokumen(pegawai, "spp.pdf", jenis=40)
    factory.jabatan(pegawai, TMT, file_spp=dokumen.id)
    session.commit()
    path = dataset_file([{"id": "r1", "nipBaru": "12345", "tmtJabatan": "01-03-2020", "path": {}}])

    result = app.test_cli_runner().invoke(args=["cleanup-files", "--dataset", str(path), "--commit"])

    assert result.exit_code == 0, result.output
    assert session.query(RiwayatJabatan).one().file_spp is None
    assert session.get(Dokumen, dokumen.id).status == 0


def test_build_dataset_merges_staging(app):
    data_dir = app.config["STAGING_DATA_DIR"]
    write_dataset(os.path.join(data_dir, "111.json"), [{"id": "a"}])
    write_dataset(os.path.join(data_dir, "222.json"), [{"id": "b"}])

    result = app.test_cli_runner().invoke(args=["build-dataset"])

    assert result.exit_code == 0, result.output
    with open(os.path.join(data_dir, "1-final.json"), encoding="utf-8") as handle:
        assert [item["id"] for item in json.load(handle)["data"]] == ["a", "b"]


def test_fetch_requires_nip_list(app):
    result = app.test_cli_runner().invoke(args=["fetch"])

    assert result.exit_code == 1


def test_import_uses_default_dataset_and_commits(app, session, factory):
    factory.pegawai("12345")
    session.commit()
    write_dataset(os.path.join(app.config["STAGING_DATA_DIR"], "1-final.json"), [{
        "id": "r1", "nipBaru": "12345", "tmtJabatan": "01-03-2020", "namaJabatan": "Analis",
    }])

    result = app.test_cli_runner().invoke(args=["import-jabatan", "--commit", "--nip", "12345"])

    assert result.exit_code == 0, result.output
    assert session.query(RiwayatJabatan).one().bkn_id == "r1"


def test_validate_links_fails_on_missing_file(app, session, factory):
    pegawai = factory.pegawai("12345")
    dokumen = factory.dokumen(pegawai, "hilang.pdf", content=None)
    factory.jabatan(pegawai, TMT, file_id=dokumen.id)
    session.commit()
    runner = app.test_cli_runner()

    assert runner.invoke(args=["validate-links"]).exit_code == 1
    assert runner.invoke(args=["validate-links", "--no-fs"]).exit_code == 0


def test_validate_staging_with_ids_file(app, tmp_path):
    write_dataset(os.path.join(app.config["STAGING_DATA_DIR"], "12345.json"),
                  [{"id": "r1", "tmtJabatan": "01-03-2020"}])
    ids_file = tmp_path / "ids.txt"
    ids_file.write_text("r1\n")

    result = app.test_cli_runner().invoke(args=["validate-staging", "--ids-file", str(ids_file)])

    assert result.exit_code == 0, result.output


def test_restore_dry_run_needs_no_credentials(app, session, factory, dataset_file):
    pegawai = factory.pegawai("12345")
    dokumen = factory.dokumen(pegawai, "hilang.pdf", content=None)
    factory.jabatan(pegawai, TMT, file_id=dokumen.id)
    session.commit()
    path = dataset_file([{"id": "r1", "nipBaru": "12345", "tmtJabatan": "01-03-2020",
                          "path": {"872": {"dok_uri": "dok/sk.pdf"}}}])
    app.config["CLIENT_ID"] = None

    result = app.test_cli_runner().invoke(args=["restore-files", "--dataset", str(path)])

    assert result.exit_code == 0, result.output
    assert not os.path.exists(dokumen.file_path)


def test_fatal_error_still_writes_report(app, tmp_path):
    report = tmp_path / "cleanup.xlsx"

    result = app.test_cli_runner().invoke(args=["cleanup-files", "--report", str(report)])

    assert result.exit_code == 1
    workbook = openpyxl.load_workbook(report)
    errors = list(workbook["Error"].iter_rows(min_row=2, values_only=True))
    assert [(category, key) for category, key, _message in errors] == [("input", "cleanup-files")]


def test_unexpected_error_exits_with_summary(app, dataset_file, monkeypatch, tmp_path):
    def rusak(self, index):
        raise ValueError("bentuk data tak terduga")

    monkeypatch.setattr(CleanupEngine, "run", rusak)
    report = tmp_path / "cleanup.xlsx"

    result = app.test_cli_runner().invoke(
        args=["cleanup-files", "--dataset", str(dataset_file([])), "--report", str(report)])

    assert result.exit_code == 1
    errors = list(openpyxl.load_workbook(report)["Error"].iter_rows(min_row=2, values_only=True))
    assert errors == [("input", "cleanup-files", "ValueError: bentuk data tak terduga")]
