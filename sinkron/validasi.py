"""Validasi data staging dan tautan berkas di database."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from models.dokumen import Dokumen
from models.jabatan import RiwayatJabatan
from models.pegawai import Pegawai

from .berkas import FILE_KEY_MAPPING, file_key_for_doc_id, has_pdf_signature, resolve_staging_filename, slot_for_column
from .dataset import DatasetIndex
from .laporan import ERROR_FILESYSTEM, ERROR_INPUT, ERROR_LOOKUP
from .normalisasi import format_local_date, parse_local_date, sanitize_text

logger = logging.getLogger(__name__)


def read_staging_json(path):
    """Kembalikan ``(records, masalah)``; records ``None`` bila struktur rusak."""
    try:
        parsed = json.loads(sanitize_text(Path(path).read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        return None, f"JSON gagal dibaca: {exc}"
    if not isinstance(parsed, dict) or not isinstance(parsed.get("data"), list):
        return None, "array 'data' tidak ada atau tidak valid"
    return parsed["data"], None


class StagingValidator:
    def __init__(self, summary, *, staging_data_dir, staging_files_dir, dataset_filename=None):
        self.summary = summary
        self.staging_data_dir = Path(staging_data_dir)
        self.staging_files_dir = Path(staging_files_dir)
        self.dataset_filename = dataset_filename

    def nip_files(self, nips=None):
        if nips:
            return [self.staging_data_dir / f"{nip}.json" for nip in sorted(nips)]
        return [path for path in sorted(self.staging_data_dir.glob("*.json"))
                if path.name != self.dataset_filename]

    def check_document(self, record, doc_id, info, key):
        file_key = file_key_for_doc_id(doc_id)
        if file_key is None:
            logger.debug("[WARN] %s: doc %s tidak punya pemetaan; dilewati.", key, doc_id)
            return
        if file_key not in FILE_KEY_MAPPING:
            self.summary.record_error(ERROR_INPUT, key, f"doc {doc_id} dipetakan ke kunci lokal '{file_key}' yang tidak dikenal")
            return
        uri = info.get("dok_uri") if isinstance(info, dict) else None
        if not isinstance(uri, str):
            self.summary.record_error(ERROR_INPUT, key, f"doc {doc_id} tidak punya 'dok_uri' yang valid")
            return
        staging_name = resolve_staging_filename(record.get("id"), doc_id, uri)
        if staging_name is None:
            self.summary.record_error(ERROR_INPUT, key, f"doc {doc_id}: nama berkas staging tidak bisa diturunkan")
            return

        source_path = self.staging_files_dir / staging_name
        if not source_path.exists():
            self.summary.record_error(ERROR_FILESYSTEM, key, f"doc {doc_id}: berkas staging tidak ada ({staging_name})")
            return
        if not source_path.is_file():
            self.summary.record_error(ERROR_FILESYSTEM, key, f"doc {doc_id}: {staging_name} bukan berkas biasa")
            return
        if source_path.stat().st_size == 0:
            self.summary.record_error(ERROR_FILESYSTEM, key, f"doc {doc_id}: {staging_name} berukuran 0 byte")
            return
        try:
            if not has_pdf_signature(source_path):
                logger.warning("[WARN] %s: %s tidak diawali %%PDF; periksa manual.", key, staging_name)
                self.summary.count("peringatan")
        except OSError as exc:
            logger.warning("[WARN] %s: header %s tidak bisa dibaca: %s", key, staging_name, exc)
            self.summary.count("peringatan")
        self.summary.count("dokumen_ok")

    def check_record(self, record, nip):
        key = f"NIP {nip} / record {record.get('id') or '<tanpa-id>'}"
        self.summary.count("record_diperiksa")
        if not record.get("id") or not record.get("tmtJabatan"):
            self.summary.record_error(ERROR_INPUT, key, "field wajib (id atau tmtJabatan) kosong")
        elif parse_local_date(record.get("tmtJabatan")) is None:
            self.summary.record_error(ERROR_INPUT, key, f"format tmtJabatan tidak valid {record.get('tmtJabatan')!r}")
        if record.get("tanggalSk") and parse_local_date(record.get("tanggalSk")) is None:
            logger.warning("[WARN] %s: tanggalSk tidak valid %r", key, record.get("tanggalSk"))
            self.summary.count("peringatan")

        path = record.get("path")
        if not isinstance(path, dict) or not path:
            logger.debug("[WARN] %s: tidak ada entri 'path'.", key)
            self.summary.count("record_tanpa_dokumen")
            return
        for doc_id, info in path.items():
            self.check_document(record, doc_id, info, key)

    def run(self, nips=None, record_ids=None):
        files = self.nip_files(nips)
        if not files:
            logger.info("[CHECK] Tidak ada JSON staging untuk divalidasi.")
            return
        seen_ids = set()
        for path in files:
            nip = path.stem
            self.summary.count("file_diperiksa")
            records, problem = read_staging_json(path)
            if records is None:
                self.summary.record_error(ERROR_INPUT, path.name, problem)
                continue
            for record in records:
                if not isinstance(record, dict):
                    self.summary.record_error(ERROR_INPUT, path.name, "entri 'data' bukan objek")
                    continue
                if record_ids is not None:
                    if record.get("id") not in record_ids:
                        continue
                    seen_ids.add(record.get("id"))
                self.check_record(record, nip)

        for missing in sorted((record_ids or set()) - seen_ids):
            self.summary.record_error(ERROR_LOOKUP, missing, "ID record tidak ditemukan di JSON staging")


class LinkValidator:
    """Periksa setiap tautan berkas trx_jabatan terhadap trx_employee_file dan disk."""

    def __init__(self, session, summary, *, check_fs=True, check_status=True):
        self.session = session
        self.summary = summary
        self.check_fs = check_fs
        self.check_status = check_status

    def linked_rows(self, nip_filter=None):
        query = self.session.query(RiwayatJabatan, Pegawai.nip).join(
            Pegawai, Pegawai.id == RiwayatJabatan.pegawai_id
        )
        if nip_filter:
            query = query.filter(Pegawai.nip.in_(sorted(nip_filter)))
        return query.order_by(Pegawai.nip, RiwayatJabatan.tmt, RiwayatJabatan.id).all()

    def check_links(self, rows):
        file_ids = {file_id for row, _nip in rows for _column, file_id in row.file_refs()}
        files = {}
        if file_ids:
            files = {dokumen.id: dokumen for dokumen in
                     self.session.query(Dokumen).filter(Dokumen.id.in_(sorted(file_ids))).all()}

        for row, nip in rows:
            for column, file_id in row.file_refs():
                label = slot_for_column(column).file_key
                key = f"NIP {nip} / TMT {format_local_date(row.tmt)} / {label}"
                self.summary.count("tautan_diperiksa")
                dokumen = files.get(file_id)
                if dokumen is None:
                    self.summary.record_error(ERROR_LOOKUP, key, f"file_id {file_id} tidak ada di trx_employee_file")
                    continue
                issues = []
                if self.check_status and not dokumen.aktif:
                    issues.append((ERROR_LOOKUP, f"status={dokumen.status}"))
                if self.check_fs:
                    if not dokumen.file_path:
                        issues.append((ERROR_FILESYSTEM, "path kosong"))
                    elif not os.path.exists(dokumen.file_path):
                        issues.append((ERROR_FILESYSTEM, f"path hilang: {dokumen.file_path}"))
                for category, message in issues:
                    self.summary.record_error(category, key, f"file_id {file_id}: {message}")
                if not issues:
                    logger.debug("[OK] %s -> %s", key, dokumen.file_path)
                    self.summary.count("tautan_ok")

    def check_dataset(self, dataset_index: DatasetIndex):
        """Setiap dokumen terpetakan di dataset harus punya baris dan tautan di DB."""
        for (nip, tmt), records in dataset_index.items():
            key = f"NIP {nip} / TMT {format_local_date(tmt)}"
            expected = set()
            for record in records:
                for doc_id in record.documents:
                    file_key = file_key_for_doc_id(doc_id)
                    if file_key is not None:
                        expected.add(file_key)
            if not expected:
                continue
            self.summary.count("grup_dataset_diperiksa")
            rows = self.session.query(RiwayatJabatan).join(
                Pegawai, Pegawai.id == RiwayatJabatan.pegawai_id
            ).filter(Pegawai.nip == nip, RiwayatJabatan.tmt == tmt).all()
            if not rows:
                self.summary.record_error(ERROR_LOOKUP, key, "baris jabatan untuk record dataset tidak ditemukan")
                continue
            for file_key in sorted(expected):
                column = FILE_KEY_MAPPING[file_key].column
                if not any(getattr(row, column) for row in rows):
                    self.summary.record_error(ERROR_LOOKUP, key, f"dokumen {file_key} ada di dataset tapi tidak tertaut")

    def run(self, nip_filter=None, dataset_index=None):
        rows = self.linked_rows(nip_filter)
        self.summary.count("baris_diperiksa", len(rows))
        if not rows:
            logger.warning("[CHECK] Tidak ada baris jabatan yang cocok dengan filter.")
        rows_with_links = [(row, nip) for row, nip in rows if row.file_refs()]
        self.check_links(rows_with_links)
        if dataset_index is not None:
            self.check_dataset(dataset_index)
        self.session.rollback()
