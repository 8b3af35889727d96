"""Siklus hidup berkas pegawai: lepas rujukan, nonaktifkan, hapus, pulihkan.

Semua perubahan database dan filesystem dari proses rekonsiliasi lewat kelas
ini. Dalam mode dry-run perubahan hanya dicatat pada overlay di memori,
sehingga pengecekan "masih dirujuk" pada grup berikutnya memberi jawaban yang
sama dengan mode commit tanpa menulis apa pun ke database.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from models.dokumen import Dokumen, FILE_STATUS_AKTIF, FILE_STATUS_NONAKTIF
from models.jabatan import FILE_COLUMNS, RiwayatJabatan
from models.pegawai import Pegawai

from .berkas import doc_id_for_file_key, slot_for_column
from .errors import FetchError, SinkronError
from .laporan import ERROR_FETCH, ERROR_FILESYSTEM, ERROR_LOOKUP, error_category
from .normalisasi import format_local_date

logger = logging.getLogger(__name__)


def references_filter(file_id):
    return or_(
        RiwayatJabatan.file_id == file_id,
        RiwayatJabatan.file_spp == file_id,
        RiwayatJabatan.file_ba == file_id,
    )


class _Overlay:
    """Perubahan yang direncanakan (dry-run) per grup dan per run."""

    def __init__(self):
        self.slots = {}
        self.deleted_rows = set()
        self.inactive_files = set()

    def merge(self, other):
        self.slots.update(other.slots)
        self.deleted_rows |= other.deleted_rows
        self.inactive_files |= other.inactive_files


class FileLifecycleManager:
    def __init__(self, session, summary, *, superadmin_id=1, delete_files=False):
        self.session = session
        self.summary = summary
        self.dry_run = summary.dry_run
        self.superadmin_id = superadmin_id
        self.delete_files = delete_files
        self._planned = _Overlay()
        self._group = _Overlay()
        self._pending_deletes = []
        self._placeholder_id = 0

    # --- Perubahan baris ---

    def current_value(self, row, column):
        """Nilai kolom berkas setelah perubahan yang sudah direncanakan."""
        slot = (row.id, column)
        for overlay in (self._group, self._planned):
            if slot in overlay.slots:
                return overlay.slots[slot]
        return getattr(row, column)

    def _touch(self, row):
        row.update_by = self.superadmin_id
        row.update_date = datetime.utcnow()

    def set_link(self, row, column, file_id, key, note=""):
        detail = f"trx_jabatan {row.id if row.id is not None else '(baru)'}.{column} <- berkas {file_id}"
        self.summary.record_action("TAUTKAN", key, f"{detail} {note}".strip())
        if self.dry_run:
            self._group.slots[(row.id, column)] = file_id
            return
        setattr(row, column, file_id)
        self._touch(row)

    def clear_link(self, row, column, key):
        file_id = self.current_value(row, column)
        slot = slot_for_column(column)
        label = slot.file_key if slot else column
        self.summary.record_action("LEPAS", key, f"trx_jabatan {row.id}.{column} ({label}) berkas {file_id}")
        if self.dry_run:
            self._group.slots[(row.id, column)] = None
            return
        setattr(row, column, None)
        self._touch(row)

    def delete_row(self, row, key):
        self.summary.record_action("HAPUS_BARIS", key, f"trx_jabatan {row.id}")
        if self.dry_run:
            self._group.deleted_rows.add(row.id)
            return
        self.session.delete(row)

    def create_file_record(self, pegawai_id, slot, file_path, size, key):
        self.summary.record_action("BERKAS_BARU", key, f"{slot.file_key} -> {file_path} ({size} byte)")
        dokumen = Dokumen(
            pegawai_id=pegawai_id,
            nama=os.path.basename(file_path),
            jenis=slot.file_type,
            file_path=file_path,
            ukuran=size,
            ekstensi="pdf",
            status=FILE_STATUS_AKTIF,
            create_by=self.superadmin_id,
            create_date=datetime.utcnow(),
        )
        if self.dry_run:
            # ID sementara negatif agar rencana tautan tetap bisa dihitung
            self._placeholder_id -= 1
            dokumen.id = self._placeholder_id
            return dokumen
        self.session.add(dokumen)
        self.session.flush()
        return dokumen

    # --- Rujukan & yatim ---

    def reference_count(self, file_id, exclude_row_ids=()):
        query = self.session.query(RiwayatJabatan.id).filter(references_filter(file_id))
        if exclude_row_ids:
            query = query.filter(RiwayatJabatan.id.notin_(list(exclude_row_ids)))
        return query.count()

    def is_referenced(self, file_id):
        """Apakah masih ada baris yang merujuk berkas ini, di seluruh tabel.

        Mode commit: dibaca di transaksi yang sama setelah unlink di-flush.
        """
        if not self.dry_run:
            self.session.flush()
            return self.reference_count(file_id) > 0

        deleted = self._planned.deleted_rows | self._group.deleted_rows
        rows = self.session.query(RiwayatJabatan).filter(references_filter(file_id)).all()
        for row in rows:
            if row.id in deleted:
                continue
            if any(self.current_value(row, column) == file_id for column in FILE_COLUMNS):
                return True
        # Tautan baru yang direncanakan ke baris yang di DB belum merujuk berkas ini
        effective = dict(self._planned.slots)
        effective.update(self._group.slots)
        for (row_id, _column), value in effective.items():
            if value == file_id and row_id not in deleted:
                return True
        return False

    def _is_inactive(self, dokumen):
        if dokumen.id in self._planned.inactive_files or dokumen.id in self._group.inactive_files:
            return True
        return not dokumen.aktif

    def release(self, file_id, key):
        """Lepas berkas yang sudah tidak dirujuk: ACTIVE (yatim) -> INACTIVE [-> REMOVED]."""
        if file_id is None or file_id < 0:
            return False
        if self.is_referenced(file_id):
            logger.info("[INFO] Berkas %s masih dirujuk baris lain; status tetap aktif.", file_id)
            self.summary.count("berkas_masih_dirujuk")
            return False

        dokumen = self.session.get(Dokumen, file_id)
        if dokumen is None:
            logger.warning("[WARN] Record berkas %s tidak ditemukan saat melepas rujukan (%s).", file_id, key)
            self.summary.count("record_berkas_hilang")
            return False
        if self._is_inactive(dokumen):
            return False

        self.summary.record_action("NONAKTIFKAN", key, f"berkas {file_id} ({dokumen.file_path})")
        self.summary.count("berkas_dinonaktifkan")
        if self.dry_run:
            self._group.inactive_files.add(file_id)
        else:
            dokumen.status = FILE_STATUS_NONAKTIF
            dokumen.update_by = self.superadmin_id
            dokumen.update_date = datetime.utcnow()

        if self.delete_files and dokumen.file_path:
            self.summary.record_action("HAPUS_BERKAS", key, dokumen.file_path)
            if not self.dry_run:
                self._pending_deletes.append((key, dokumen.file_path))
        return True

    # --- Batas transaksi ---

    def commit(self):
        if self.dry_run:
            self._planned.merge(self._group)
            self._group = _Overlay()
            self.session.rollback()
            return
        self.session.commit()
        self._delete_artifacts()

    def rollback(self):
        self._group = _Overlay()
        self._pending_deletes = []
        self.session.rollback()

    def _delete_artifacts(self):
        # Dijalankan setelah commit: gagal hapus tidak membatalkan penonaktifan
        pending, self._pending_deletes = self._pending_deletes, []
        for key, path in pending:
            try:
                os.remove(path)
            except FileNotFoundError:
                logger.info("[FILE] %s sudah tidak ada di disk.", path)
            except OSError as exc:
                logger.warning("[FILE] Gagal menghapus %s (%s): %s", path, key, exc)
                self.summary.count("hapus_berkas_gagal")
            else:
                logger.info("[FILE] Dihapus %s", path)
                self.summary.count("berkas_dihapus")

    # --- Pemulihan berkas yang hilang dari disk ---

    def restore_missing(self, client, dataset_index, nip_filter=None):
        """Unduh ulang berkas aktif yang masih ditautkan tapi tidak ada di disk."""
        query = self.session.query(RiwayatJabatan, Pegawai.nip).join(
            Pegawai, Pegawai.id == RiwayatJabatan.pegawai_id
        ).filter(or_(*[getattr(RiwayatJabatan, column).isnot(None) for column in FILE_COLUMNS]))
        if nip_filter:
            query = query.filter(Pegawai.nip.in_(sorted(nip_filter)))
        rows = query.order_by(RiwayatJabatan.id).all()
        logger.info("[DB] %d baris jabatan dengan berkas tertaut akan diperiksa.", len(rows))

        file_ids = {file_id for row, _nip in rows for _column, file_id in row.file_refs()}
        dokumen_map = {}
        if file_ids:
            dokumen_map = {
                dokumen.id: dokumen
                for dokumen in self.session.query(Dokumen).filter(Dokumen.id.in_(sorted(file_ids))).all()
            }

        handled = set()
        for row, nip in rows:
            tmt_label = format_local_date(row.tmt)
            for column, file_id in row.file_refs():
                slot = slot_for_column(column)
                key = f"NIP {nip} / TMT {tmt_label} / {slot.file_key}"
                self.summary.count("tautan_diperiksa")
                if file_id in handled:
                    continue
                handled.add(file_id)
                self._restore_one(client, dataset_index, row, nip, slot, dokumen_map.get(file_id), file_id, key)

        # Restore tidak mengubah database
        self.session.rollback()

    def _restore_one(self, client, dataset_index, row, nip, slot, dokumen, file_id, key):
        if dokumen is None:
            self.summary.record_error(ERROR_LOOKUP, key, f"record berkas {file_id} tidak ada di trx_employee_file")
            return
        if not dokumen.file_path:
            self.summary.record_error(ERROR_LOOKUP, key, f"berkas {file_id} tidak memiliki path")
            return
        if os.path.exists(dokumen.file_path):
            return

        self.summary.count("berkas_hilang")
        if not dokumen.aktif:
            # INACTIVE tidak pernah dihidupkan lagi lewat restore
            logger.warning("[SKIP] Berkas %s (%s) nonaktif; tidak dipulihkan.", file_id, key)
            self.summary.count("dilewati_nonaktif")
            return

        candidates = dataset_index.get(nip, row.tmt) if dataset_index is not None else []
        if not candidates:
            logger.warning("[WARN] Dataset tidak punya entri untuk %s; baris %s dilewati.", key, row.id)
            self.summary.count("dilewati_tanpa_dataset")
            return

        doc_id = doc_id_for_file_key(slot.file_key)
        # Utamakan record BKN yang memang sumber baris ini
        candidates = sorted(candidates, key=lambda record: record.id != row.bkn_id)
        document = None
        for record in candidates:
            document = record.document(doc_id) if doc_id else None
            if document is not None:
                break
        if document is None:
            logger.warning("[WARN] Dataset untuk %s tidak punya URI dokumen %s; pemulihan dilewati.",
                           key, slot.file_key)
            self.summary.count("dilewati_tanpa_uri")
            return

        self.summary.record_action("PULIHKAN", key, f"berkas {file_id} dari {document.uri} -> {dokumen.file_path}")
        if self.dry_run:
            return
        try:
            size = client.download_to(document.uri, dokumen.file_path)
        except (FetchError, OSError) as exc:
            self.summary.record_error(ERROR_FETCH if isinstance(exc, FetchError) else ERROR_FILESYSTEM, key,
                                      f"gagal memulihkan berkas {file_id}: {exc}")
            return
        logger.info("[RESTORE] Berkas %s dipulihkan (%d byte).", file_id, size)
        self.summary.count("berkas_dipulihkan")


def run_group(lifecycle, summary, key, work):
    """Jalankan satu grup dalam satu transaksi; error dicatat, run tetap lanjut.

    Penghitung dan aksi grup baru masuk ringkasan setelah commit berhasil.
    """
    summary.begin_group()
    try:
        work()
        lifecycle.commit()
    except (SinkronError, SQLAlchemyError, OSError) as exc:
        lifecycle.rollback()
        summary.discard_group()
        summary.record_error(error_category(exc), key, str(exc))
        return False
    except Exception as exc:
        # Bentuk data tak terduga tidak boleh menghentikan grup lain
        logger.exception("[FAIL] Error tak terduga pada %s", key)
        lifecycle.rollback()
        summary.discard_group()
        summary.record_error(error_category(exc), key, f"{type(exc).__name__}: {exc}", log=False)
        return False
    summary.commit_group()
    return True
