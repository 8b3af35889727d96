"""Pemetaan jenis dokumen BKN ke kolom berkas lokal."""
from __future__ import annotations

import os
from datetime import date
from typing import NamedTuple, Optional

from werkzeug.utils import secure_filename


class FileSlot(NamedTuple):
    file_key: str
    column: str
    file_type: int


# dok_id BKN -> kunci kategori berkas. 874 (BA) jarang muncul tapi tetap valid.
DOC_ID_TO_FILE_KEY = {
    "872": "skJabatan",
    "873": "spPelantikan",
    "874": "baJabatan",
}

FILE_KEY_MAPPING = {
    "skJabatan": FileSlot("skJabatan", "file_id", 11),
    "spPelantikan": FileSlot("spPelantikan", "file_spp", 40),
    "baJabatan": FileSlot("baJabatan", "file_ba", 41),
}

_FILE_KEY_TO_DOC_ID = {file_key: doc_id for doc_id, file_key in DOC_ID_TO_FILE_KEY.items()}
_COLUMN_TO_SLOT = {slot.column: slot for slot in FILE_KEY_MAPPING.values()}


def file_key_for_doc_id(doc_id) -> Optional[str]:
    return DOC_ID_TO_FILE_KEY.get(str(doc_id))


def doc_id_for_file_key(file_key: str) -> Optional[str]:
    return _FILE_KEY_TO_DOC_ID.get(file_key)


def slot_for_doc_id(doc_id) -> Optional[FileSlot]:
    file_key = file_key_for_doc_id(doc_id)
    return FILE_KEY_MAPPING.get(file_key) if file_key else None


def slot_for_column(column: str) -> Optional[FileSlot]:
    return _COLUMN_TO_SLOT.get(column)


def managed_slots():
    """Kategori yang punya dok_id BKN, satu-satunya yang boleh diubah oleh sinkronisasi."""
    return [slot for slot in FILE_KEY_MAPPING.values() if slot.file_key in _FILE_KEY_TO_DOC_ID]


def resolve_staging_filename(record_id, doc_key, source_uri) -> Optional[str]:
    """Nama berkas di folder staging: ``{record_id}_{doc_key}_{basename}``."""
    if not isinstance(source_uri, str):
        return None
    basename = os.path.basename(source_uri)
    if not basename:
        return None
    return f"{record_id}_{doc_key}_{basename}"


UNKNOWN_DATE_PART = "000000"


def build_final_filename(nip: str, nama_jabatan: Optional[str], tanggal_sk: Optional[date], file_key: str) -> str:
    """Nama berkas final, contoh: ``1987..._KEPALA_SEKSI_010320_skJabatan.pdf``."""
    jabatan_part = secure_filename((nama_jabatan or "UNKNOWN").upper()) or "UNKNOWN"
    # Tanpa tanggal SK nama tetap stabil antar run
    date_part = tanggal_sk.strftime("%d%m%y") if tanggal_sk else UNKNOWN_DATE_PART
    return f"{nip}_{jabatan_part}_{date_part}_{file_key}.pdf"


def has_pdf_signature(path) -> bool:
    with open(path, "rb") as handle:
        return handle.read(4) == b"%PDF"
