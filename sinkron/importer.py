"""Import riwayat jabatan dari dataset BKN ke trx_jabatan beserta berkasnya."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from models.jabatan import STATUS_SYNC_BKN, RiwayatJabatan
from models.pegawai import Pegawai

from .berkas import FileSlot, build_final_filename, resolve_staging_filename, slot_for_doc_id
from .dataset import DatasetIndex, ExternalRecord
from .errors import DuplicateKeyError, LookupFailure
from .laporan import ERROR_FILESYSTEM, ERROR_INPUT
from .normalisasi import format_local_date, parse_local_date
from .siklus_berkas import run_group

logger = logging.getLogger(__name__)

# Record tanpa satu pun field ini tidak punya informasi jabatan untuk disimpan
METADATA_FIELDS = (
    "unorId",
    "namaUnor",
    "unorIndukId",
    "unorIndukNama",
    "jabatanFungsionalId",
    "jabatanFungsionalNama",
    "jabatanFungsionalUmumId",
    "jabatanFungsionalUmumNama",
    "namaJabatan",
    "nomorSk",
    "tanggalSk",
)


def is_blank(value):
    return value is None or (isinstance(value, str) and value.strip() == "")


def has_metadata(raw):
    return not all(is_blank(raw.get(name)) for name in METADATA_FIELDS)


def choose_primary(records: Sequence[ExternalRecord], bkn_id: Optional[str] = None) -> ExternalRecord:
    """Record acuan satu kunci NIP/TMT: yang menjadi sumber baris lama, atau yang pertama."""
    if bkn_id:
        for record in records:
            if record.id == bkn_id:
                return record
    return records[0]


@dataclass
class StagedDocument:
    slot: FileSlot
    source_path: str
    final_path: str
    size: int


class JabatanImporter:
    """Satu upsert trx_jabatan per kunci (NIP, TMT), sekalipun dataset memuat beberapa record."""

    def __init__(self, session, lifecycle, summary, *, staging_files_dir, destination_base):
        self.session = session
        self.lifecycle = lifecycle
        self.summary = summary
        self.staging_files_dir = staging_files_dir
        self.destination_base = destination_base

    def stage_documents(self, primary: ExternalRecord, records: Sequence[ExternalRecord], pegawai) -> List[StagedDocument]:
        """Satu berkas per slot; record acuan didahulukan, record lain mengisi slot yang kosong."""
        staged = {}
        tanggal_sk = parse_local_date(primary.tanggal_sk)
        ordered = [primary] + [record for record in records if record is not primary]
        for record in ordered:
            for doc_id, document in record.documents.items():
                slot = slot_for_doc_id(doc_id)
                if slot is None:
                    logger.debug("[FILE] Doc id %s pada record %s tidak dikenal; dilewati.", doc_id, record.id)
                    continue
                if slot.column in staged:
                    continue
                staging_name = resolve_staging_filename(record.id, doc_id, document.uri)
                if staging_name is None:
                    logger.warning("[FILE] Nama berkas tidak bisa diturunkan dari dok_uri doc %s record %s.",
                                   doc_id, record.id)
                    continue
                source_path = os.path.join(self.staging_files_dir, staging_name)
                if not os.path.isfile(source_path):
                    logger.warning("[FILE] Berkas tidak ada di staging: %s", staging_name)
                    self.summary.count("berkas_staging_hilang")
                    continue
                final_name = build_final_filename(pegawai.nip, primary.nama_jabatan, tanggal_sk, slot.file_key)
                staged[slot.column] = StagedDocument(
                    slot=slot,
                    source_path=source_path,
                    final_path=os.path.join(self.destination_base, pegawai.nip, final_name),
                    size=os.path.getsize(source_path),
                )
        return list(staged.values())

    def find_row(self, pegawai, tmt: date, key) -> Optional[RiwayatJabatan]:
        rows = self.session.query(RiwayatJabatan).filter(
            RiwayatJabatan.pegawai_id == pegawai.id,
            RiwayatJabatan.tmt == tmt,
        ).all()
        if len(rows) > 1:
            raise DuplicateKeyError(f"{len(rows)} baris jabatan untuk {key}; jalankan dedupe-jabatan dulu")
        return rows[0] if rows else None

    def create_row(self, pegawai, record: ExternalRecord, key) -> RiwayatJabatan:
        row = RiwayatJabatan(
            pegawai_id=pegawai.id,
            tmt=record.tmt,
            create_by=self.lifecycle.superadmin_id,
        )
        self.summary.record_action("BARIS_BARU", key, f"trx_jabatan bkn_id {record.id}")
        if not self.lifecycle.dry_run:
            self.session.add(row)
        return row

    @staticmethod
    def payload(record: ExternalRecord):
        return {
            "bkn_id": record.id,
            "nama_jabatan": record.nama_jabatan,
            "organisasi": record.unor_nama,
            "nomor_sk": record.nomor_sk,
            "tgl_sk": parse_local_date(record.tanggal_sk),
            "status": STATUS_SYNC_BKN,
        }

    def usable_records(self, records: Sequence[ExternalRecord], key) -> List[ExternalRecord]:
        usable = []
        for record in records:
            self.summary.count("record_diperiksa")
            if record.malformed_fields:
                self.summary.record_error(ERROR_INPUT, key, f"record {record.id}: field bukan teks "
                                                            f"({', '.join(record.malformed_fields)})")
                continue
            if not has_metadata(record.raw):
                logger.warning("[SKIP] Record %s (NIP %s) tidak punya metadata jabatan/organisasi.",
                               record.id, record.nip)
                self.summary.count("dilewati_tanpa_metadata")
                continue
            usable.append(record)
        return usable

    def import_group(self, nip: str, tmt: date, records: Sequence[ExternalRecord]) -> bool:
        key = f"NIP {nip} / TMT {format_local_date(tmt)}"
        records = self.usable_records(records, key)
        if not records:
            return False
        if len(records) > 1:
            logger.info("[GROUP] %s punya %d record; digabung menjadi satu baris.", key, len(records))
            self.summary.count("record_digabung", len(records) - 1)

        staged: List[StagedDocument] = []

        def work():
            pegawai = Pegawai.find_active_by_nip(self.session, nip)
            if pegawai is None:
                raise LookupFailure(f"NIP {nip} tidak ditemukan di ms_employee")

            row = self.find_row(pegawai, tmt, key)
            created = row is None
            primary = choose_primary(records, None if created else row.bkn_id)
            staged.extend(self.stage_documents(primary, records, pegawai))
            if created:
                row = self.create_row(pegawai, primary, key)

            changes = {name: value for name, value in self.payload(primary).items()
                       if created or getattr(row, name) != value}
            if changes and not created:
                self.summary.record_action("PERBARUI", key, f"trx_jabatan {row.id}: {', '.join(sorted(changes))}")
            if not self.lifecycle.dry_run:
                for name, value in changes.items():
                    setattr(row, name, value)
                self.session.flush()
            if not changes and not staged:
                self.summary.count("tidak_berubah")
                return

            replaced = []
            for document in staged:
                dokumen = self.lifecycle.create_file_record(
                    pegawai.id, document.slot, document.final_path, document.size, key
                )
                previous = None if created else self.lifecycle.current_value(row, document.slot.column)
                self.lifecycle.set_link(row, document.slot.column, dokumen.id, key)
                if previous and previous != dokumen.id:
                    replaced.append(previous)
            for file_id in replaced:
                self.lifecycle.release(file_id, key)
            logger.info("[UPSERT] %s (record %s) diproses.", key, primary.id)

        if not run_group(self.lifecycle, self.summary, key, work):
            return False
        self.summary.count("record_diimpor")
        if not self.lifecycle.dry_run:
            self.move_files(staged, key)
        return True

    def move_files(self, staged: List[StagedDocument], key) -> None:
        # Dipindah setelah commit; berkas staging tetap ada bila transaksi gagal
        for document in staged:
            try:
                os.makedirs(os.path.dirname(document.final_path), exist_ok=True)
                if os.path.exists(document.final_path):
                    logger.warning("[FILE_MOVE] Berkas lama ditimpa: %s", document.final_path)
                os.replace(document.source_path, document.final_path)
            except OSError as exc:
                self.summary.record_error(ERROR_FILESYSTEM, key,
                                          f"gagal memindahkan {document.source_path}: {exc}")
                continue
            logger.info("[FILE_MOVE] Dipindah ke %s", document.final_path)
            self.summary.count("berkas_dipindah")

    def run(self, dataset_index: DatasetIndex) -> None:
        if not len(dataset_index):
            logger.warning("[DATASET] Tidak ada record yang cocok dengan filter.")
        for (nip, tmt), records in dataset_index.items():
            self.import_group(nip, tmt, records)
