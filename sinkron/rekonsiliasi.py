"""Rekonsiliasi baris trx_jabatan: dedupe per (pegawai, TMT) dan pembersihan tautan berkas.

Keputusan (baris mana yang dipertahankan, berkas mana yang digabung) dihitung
murni dari data; efek samping ke database dan disk dijalankan oleh
:class:`~sinkron.siklus_berkas.FileLifecycleManager`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func

from models.jabatan import FILE_COLUMNS, RiwayatJabatan
from models.pegawai import Pegawai

from .berkas import file_key_for_doc_id, managed_slots
from .dataset import DatasetIndex, ExternalRecord
from .errors import DuplicateKeyError, LookupFailure
from .normalisasi import format_local_date
from .siklus_berkas import run_group

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateGroup:
    nip: str
    pegawai_id: int
    tmt: date

    @property
    def label(self) -> str:
        return f"NIP {self.nip} / TMT {format_local_date(self.tmt)}"


def row_recency(row) -> datetime:
    stamps = [stamp for stamp in (row.update_date, row.create_date) if stamp is not None]
    return max(stamps) if stamps else datetime.min


def selection_key(row, external_records: Sequence[ExternalRecord]):
    """Urutan prioritas: ada di dataset, jumlah berkas, paling baru, ID terbesar.

    ID baris unik, jadi dua baris berbeda tidak pernah bernilai sama.
    """
    dataset_ids = {record.id for record in external_records if record.id}
    return (
        row.bkn_id is not None and row.bkn_id in dataset_ids,
        row.jumlah_berkas,
        row_recency(row),
        row.id,
    )


def choose_keep_row(rows, external_records: Sequence[ExternalRecord] = ()):
    if not rows:
        raise ValueError("choose_keep_row membutuhkan minimal satu baris")
    return max(rows, key=lambda row: selection_key(row, external_records))


@dataclass(frozen=True)
class Merge:
    column: str
    file_id: int
    source_row_id: int


@dataclass
class GroupPlan:
    keep: RiwayatJabatan
    redundant: List[RiwayatJabatan]
    merges: List[Merge] = field(default_factory=list)
    candidate_file_ids: List[int] = field(default_factory=list)

    def merged_links(self):
        """Nilai kolom berkas baris keep setelah merge."""
        links = {column: getattr(self.keep, column) for column in FILE_COLUMNS}
        for merge in self.merges:
            links[merge.column] = merge.file_id
        return links


def plan_group(rows, external_records: Sequence[ExternalRecord] = ()) -> GroupPlan:
    keep = choose_keep_row(rows, external_records)
    redundant = sorted((row for row in rows if row.id != keep.id), key=lambda row: row.id)

    filled = {column: getattr(keep, column) for column in FILE_COLUMNS}
    merges: List[Merge] = []
    candidates: List[int] = []
    for row in redundant:
        for column, file_id in row.file_refs():
            # Nilai pertama yang tidak kosong menang; nilai baris keep tidak pernah ditimpa
            if not filled[column]:
                filled[column] = file_id
                merges.append(Merge(column, file_id, row.id))
            if file_id not in candidates:
                candidates.append(file_id)
    return GroupPlan(keep=keep, redundant=redundant, merges=merges, candidate_file_ids=candidates)


class ReconciliationEngine:
    """Menyelesaikan baris duplikat trx_jabatan per (pegawai, TMT)."""

    def __init__(self, session, lifecycle, summary):
        self.session = session
        self.lifecycle = lifecycle
        self.summary = summary

    def find_duplicate_groups(self, nip_filter: Optional[Iterable[str]] = None) -> List[DuplicateGroup]:
        query = self.session.query(
            Pegawai.nip, RiwayatJabatan.pegawai_id, RiwayatJabatan.tmt
        ).join(
            Pegawai, Pegawai.id == RiwayatJabatan.pegawai_id
        )
        if nip_filter:
            query = query.filter(Pegawai.nip.in_(sorted(nip_filter)))
        query = query.group_by(
            Pegawai.nip, RiwayatJabatan.pegawai_id, RiwayatJabatan.tmt
        ).having(
            func.count(RiwayatJabatan.id) > 1
        ).order_by(Pegawai.nip, RiwayatJabatan.tmt)
        return [DuplicateGroup(nip, pegawai_id, tmt) for nip, pegawai_id, tmt in query.all()]

    def load_rows(self, group: DuplicateGroup):
        return self.session.query(RiwayatJabatan).filter(
            RiwayatJabatan.pegawai_id == group.pegawai_id,
            RiwayatJabatan.tmt == group.tmt,
        ).order_by(RiwayatJabatan.id).all()

    def reconcile_group(self, group: DuplicateGroup, dataset_index: Optional[DatasetIndex] = None) -> bool:
        key = group.label

        def work():
            rows = self.load_rows(group)
            self.summary.count("baris_diperiksa", len(rows))
            if len(rows) < 2:
                return
            external = dataset_index.get(group.nip, group.tmt) if dataset_index is not None else []
            plan = plan_group(rows, external)
            logger.info("[GROUP] %s: pertahankan %s, hapus %s", key, plan.keep.id,
                        ", ".join(str(row.id) for row in plan.redundant))

            for merge in plan.merges:
                self.lifecycle.set_link(plan.keep, merge.column, merge.file_id, key,
                                        note=f"(dari baris {merge.source_row_id})")
            for row in plan.redundant:
                self.lifecycle.delete_row(row, key)
            # Dicek setelah baris dihapus, di transaksi yang sama
            for file_id in plan.candidate_file_ids:
                self.lifecycle.release(file_id, key)
            self.summary.count("duplikat_diselesaikan")

        self.summary.count("grup_diperiksa")
        return run_group(self.lifecycle, self.summary, key, work)

    def run(self, dataset_index: Optional[DatasetIndex] = None, nip_filter=None) -> None:
        groups = self.find_duplicate_groups(nip_filter)
        # Query grup membuka transaksi baca; tutup sebelum kerja per grup
        self.session.rollback()
        if not groups:
            logger.info("[CHECK] Tidak ada baris jabatan duplikat.")
            return
        logger.info("[CHECK] Ditemukan %d grup NIP/TMT duplikat. Dry-run=%s.", len(groups),
                    "YA" if self.lifecycle.dry_run else "TIDAK")
        for group in groups:
            self.reconcile_group(group, dataset_index)


class CleanupEngine:
    """Lepas tautan berkas yang dokumennya tidak lagi tercantum di dataset."""

    def __init__(self, session, lifecycle, summary):
        self.session = session
        self.lifecycle = lifecycle
        self.summary = summary

    @staticmethod
    def present_file_keys(records: Sequence[ExternalRecord]) -> set:
        present = set()
        for record in records:
            for doc_id in record.documents:
                file_key = file_key_for_doc_id(doc_id)
                if file_key is None:
                    logger.debug("[PATH] Record %s punya doc id %s yang tidak dikenal; dilewati.",
                                 record.id, doc_id)
                    continue
                present.add(file_key)
        return present

    def find_row(self, nip: str, tmt: date) -> RiwayatJabatan:
        pegawai = Pegawai.find_active_by_nip(self.session, nip)
        if pegawai is None:
            raise LookupFailure(f"pegawai aktif dengan NIP {nip} tidak ditemukan")
        rows = self.session.query(RiwayatJabatan).filter(
            RiwayatJabatan.pegawai_id == pegawai.id,
            RiwayatJabatan.tmt == tmt,
        ).order_by(RiwayatJabatan.id).all()
        if not rows:
            raise LookupFailure(f"baris jabatan untuk NIP {nip} / TMT {format_local_date(tmt)} tidak ditemukan")
        if len(rows) > 1:
            raise DuplicateKeyError(
                f"{len(rows)} baris jabatan untuk NIP {nip} / TMT {format_local_date(tmt)}; "
                "jalankan dedupe-jabatan dulu"
            )
        return rows[0]

    def cleanup_group(self, dataset_key, records: Sequence[ExternalRecord]) -> bool:
        nip, tmt = dataset_key
        key = f"NIP {nip} / TMT {format_local_date(tmt)}"

        def work():
            row = self.find_row(nip, tmt)
            present = self.present_file_keys(records)
            has_path_entries = any(record.has_path_entries for record in records)
            if has_path_entries and not present:
                logger.info("[SKIP] %s punya entri path tapi tidak ada yang terpetakan; tautan dibiarkan.", key)
                self.summary.count("path_tidak_terpetakan")
                return

            unlinked = []
            for slot in managed_slots():
                file_id = self.lifecycle.current_value(row, slot.column)
                if not file_id or slot.file_key in present:
                    continue
                self.lifecycle.clear_link(row, slot.column, key)
                unlinked.append(file_id)

            if not unlinked:
                self.summary.count("tidak_berubah")
                return
            self.summary.count("tautan_dilepas", len(unlinked))
            for file_id in unlinked:
                self.lifecycle.release(file_id, key)

        self.summary.count("record_diperiksa")
        return run_group(self.lifecycle, self.summary, key, work)

    def run(self, dataset_index: DatasetIndex) -> None:
        logger.info("[CLEANUP] Memeriksa %d grup NIP/TMT dari dataset. Dry-run=%s.", len(dataset_index),
                    "YA" if self.lifecycle.dry_run else "TIDAK")
        for dataset_key, records in dataset_index.items():
            self.cleanup_group(dataset_key, records)
