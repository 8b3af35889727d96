import openpyxl

from sinkron.errors import DatasetError, DuplicateKeyError, FetchError, LookupFailure, SinkronError
from sinkron.laporan import RunSummary, error_category


def test_error_category_maps_exception_types():
    assert error_category(FetchError("x")) == "fetch"
    assert error_category(LookupFailure("x")) == "lookup"
    assert error_category(DuplicateKeyError("x")) == "lookup"
    assert error_category(DatasetError("x")) == "input"
    assert error_category(PermissionError("x")) == "filesystem"
    assert error_category(SinkronError("x")) == "persistence"


def test_dry_run_actions_are_not_marked_executed():
    summary = RunSummary("uji", dry_run=True)

    action = summary.record_action("LEPAS", "NIP 1 / TMT 01-03-2020", "trx_jabatan 5.file_id")

    assert not action.executed
    assert summary.exit_code == 0


def test_errors_set_exit_code_and_summary_lines():
    summary = RunSummary("uji", dry_run=False)
    summary.count("grup_diperiksa", 3)
    summary.record_error("lookup", "NIP 1", "tidak ditemukan")

    lines = summary.lines()

    assert summary.exit_code == 1
    assert "grup_diperiksa: 3" in lines
    assert "  - lookup: 1" in lines


def test_write_excel_has_summary_action_and_error_sheets(tmp_path):
    summary = RunSummary("uji", dry_run=False)
    summary.record_action("NONAKTIFKAN", "NIP 1", "berkas 7")
    summary.record_error("fetch", "NIP 2", "status 500")
    path = tmp_path / "laporan.xlsx"

    summary.write_excel(path)

    workbook = openpyxl.load_workbook(path)
    assert list(workbook["Aksi"].iter_rows(min_row=2, values_only=True)) == [("NONAKTIFKAN", "NIP 1", "berkas 7", "Ya")]
    assert list(workbook["Error"].iter_rows(min_row=2, values_only=True)) == [("fetch", "NIP 2", "status 500")]
