from datetime import date

import pytest

from sinkron import dataset
from sinkron.errors import DatasetError


def make_raw(record_id, nip="12345", tmt="01-03-2020", path=None, **extra):
    raw = {"id": record_id, "nipBaru": nip, "tmtJabatan": tmt, "namaJabatan": "Kepala Seksi"}
    if path is not None:
        raw["path"] = path
    raw.update(extra)
    return raw


def test_load_dataset_accepts_array_and_data_object(dataset_file):
    as_array = dataset_file([make_raw("a")], name="array.json", wrap=False)
    as_object = dataset_file([make_raw("b")], name="object.json")

    assert [record["id"] for record in dataset.load_dataset(as_array)] == ["a"]
    assert [record["id"] for record in dataset.load_dataset(as_object)] == ["b"]


def test_load_dataset_rejects_object_without_data(dataset_file, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text('{"items": []}', encoding="utf-8")

    with pytest.raises(DatasetError):
        dataset.load_dataset(path)


def test_load_dataset_rejects_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(DatasetError):
        dataset.load_dataset(path)


def test_load_dataset_strips_corrupted_bytes(tmp_path):
    path = tmp_path / "corrupt.json"
    path.write_bytes(b'{"data": [{"id": "x", "nomorSk": "SK\xff 12"}]}')

    records = dataset.load_dataset(path)
    assert records[0]["nomorSk"] == "SK 12"


def test_load_dataset_missing_file_is_fatal(tmp_path):
    with pytest.raises(DatasetError):
        dataset.load_dataset(tmp_path / "missing.json")


def test_build_index_groups_by_nip_and_tmt_in_first_occurrence_order():
    records = [
        make_raw("a", nip="2", tmt="01-01-2020"),
        make_raw("b", nip="1", tmt="01-03-2020"),
        make_raw("c", nip="2", tmt="01-01-2020"),
    ]

    index = dataset.build_index(records)

    assert list(index) == [dataset.DatasetKey("2", date(2020, 1, 1)), dataset.DatasetKey("1", date(2020, 3, 1))]
    assert [record.id for record in index.get("2", date(2020, 1, 1))] == ["a", "c"]
    assert index.get("9", date(2020, 1, 1)) == []
    assert index.record_ids() == {"a", "b", "c"}


def test_build_index_drops_records_without_nip_or_with_bad_tmt():
    records = [
        {"id": "no-nip", "tmtJabatan": "01-01-2020"},
        make_raw("bad-tmt", tmt="31-02-2020"),
        "not an object",
        make_raw("ok"),
    ]

    index = dataset.build_index(records)

    assert len(index) == 1
    reasons = {dropped.record_id: dropped.reason for dropped in index.dropped}
    assert "no-nip" in reasons
    assert "bad-tmt" in reasons
    assert len(index.dropped) == 3


def test_build_index_applies_nip_filter():
    index = dataset.build_index([make_raw("a", nip="1"), make_raw("b", nip="2")], nip_filter={"2"})
    assert [record.id for record in index.records()] == ["b"]


def test_external_record_reads_only_usable_documents():
    raw = make_raw("a", path={
        "872": {"dok_uri": "peg/sk.pdf", "dok_nama": "SK"},
        "873": {"dok_uri": ""},
        "999": "rusak",
    })

    record = dataset.build_index([raw]).get("12345", date(2020, 3, 1))[0]

    assert set(record.documents) == {"872"}
    assert record.document("872").uri == "peg/sk.pdf"
    assert record.document(872).name == "SK"
    assert record.has_path_entries


def test_load_id_list_splits_on_commas_whitespace_and_newlines(tmp_path):
    path = tmp_path / "ids.txt"
    path.write_text("a, b\nc\r\n\n d  e,,", encoding="utf-8")

    assert dataset.load_id_list(path) == {"a", "b", "c", "d", "e"}


def test_load_id_list_missing_file_raises(tmp_path):
    with pytest.raises(DatasetError):
        dataset.load_id_list(tmp_path / "nope.txt")


def test_external_record_flags_non_text_fields_but_stays_indexed():
    raw = make_raw("a", namaJabatan=123, nomorSk={"no": 1}, tanggalSk=None)

    record = dataset.build_index([raw]).get("12345", date(2020, 3, 1))[0]

    assert record.nama_jabatan is None
    assert record.nomor_sk is None
    assert record.malformed_fields == ("namaJabatan", "nomorSk")
