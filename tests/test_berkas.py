from datetime import date

from sinkron import berkas


def test_doc_id_mapping_is_bidirectional():
    for doc_id, file_key in berkas.DOC_ID_TO_FILE_KEY.items():
        assert berkas.file_key_for_doc_id(doc_id) == file_key
        assert berkas.doc_id_for_file_key(file_key) == doc_id


def test_ba_category_is_mapped():
    slot = berkas.slot_for_doc_id("874")
    assert slot.file_key == "baJabatan"
    assert slot.column == "file_ba"
    assert slot.file_type == 41


def test_unknown_doc_id_is_tolerated():
    assert berkas.file_key_for_doc_id("999") is None
    assert berkas.slot_for_doc_id(999) is None


def test_slot_for_column():
    assert berkas.slot_for_column("file_spp").file_key == "spPelantikan"
    assert berkas.slot_for_column("trx_jabatan_nama") is None


def test_resolve_staging_filename():
    assert berkas.resolve_staging_filename("rec1", "872", "dok/2020/sk.pdf") == "rec1_872_sk.pdf"


def test_resolve_staging_filename_without_basename():
    assert berkas.resolve_staging_filename("rec1", "872", "dok/2020/") is None
    assert berkas.resolve_staging_filename("rec1", "872", "") is None
    assert berkas.resolve_staging_filename("rec1", "872", None) is None


def test_build_final_filename():
    name = berkas.build_final_filename("12345", "Kepala Seksi Umum", date(2020, 3, 1), "skJabatan")
    assert name == "12345_KEPALA_SEKSI_UMUM_010320_skJabatan.pdf"


def test_build_final_filename_without_jabatan():
    name = berkas.build_final_filename("12345", None, date(2021, 12, 31), "spPelantikan")
    assert name == "12345_UNKNOWN_311221_spPelantikan.pdf"


def test_has_pdf_signature(tmp_path):
    pdf = tmp_path / "a.pdf"
    pdf.write_bytes(b"%PDF-1.7\n")
    html = tmp_path / "b.pdf"
    html.write_bytes(b"<html>")

    assert berkas.has_pdf_signature(pdf)
    assert not berkas.has_pdf_signature(html)


def test_build_final_filename_without_tanggal_sk_is_stable():
    name = berkas.build_final_filename("12345", "Analis", None, "skJabatan")
    assert name == "12345_ANALIS_000000_skJabatan.pdf"
