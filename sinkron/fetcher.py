"""Mengambil riwayat jabatan dan dokumen dari BKN ke folder staging."""
from __future__ import annotations

import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .berkas import resolve_staging_filename
from .dataset import DatasetIndex, read_documents
from .errors import FetchError
from .laporan import ERROR_FETCH, ERROR_FILESYSTEM, ERROR_INPUT, ERROR_LOOKUP, error_category

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, payload) -> None:
    path = Path(path)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


@dataclass
class FetchResult:
    nip: str
    json_cached: bool = False
    records: int = 0
    downloaded: int = 0
    skipped: int = 0
    errors: List[Tuple[str, str, str]] = field(default_factory=list)

    def fail(self, category, key, message):
        logger.error("[FAIL] %s (%s): %s", key, category, message)
        self.errors.append((category, key, message))


class StagingFetcher:
    """Unduh JSON per NIP lalu semua dokumennya; beberapa NIP diproses paralel."""

    def __init__(self, client, summary, *, staging_data_dir, staging_files_dir,
                 force_json=False, force_files=False, concurrency=8):
        self.client = client
        self.summary = summary
        self.staging_data_dir = Path(staging_data_dir)
        self.staging_files_dir = Path(staging_files_dir)
        self.force_json = force_json
        self.force_files = force_files
        self.concurrency = max(1, int(concurrency))

    def json_path(self, nip: str) -> Path:
        return self.staging_data_dir / f"{nip}.json"

    def _cached_records(self, nip: str) -> Optional[list]:
        path = self.json_path(nip)
        if self.force_json or not path.exists():
            return None
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("[JSON CACHE] %s.json tidak bisa dibaca (%s). Ambil ulang dari API.", nip, exc)
            return None
        if isinstance(parsed, dict) and isinstance(parsed.get("data"), list):
            logger.info("[JSON CACHE] Memakai %s.json yang sudah ada.", nip)
            return parsed["data"]
        logger.warning("[JSON CACHE] %s.json tidak punya array 'data'. Ambil ulang dari API.", nip)
        return None

    def fetch_nip(self, nip: str) -> FetchResult:
        result = FetchResult(nip)
        try:
            self._fetch_into(result)
        except Exception as exc:
            # Satu NIP yang rusak tidak boleh membatalkan hasil worker lain
            logger.exception("[FAIL] Error tak terduga saat memproses NIP %s", nip)
            result.fail(error_category(exc), f"NIP {nip}", f"{type(exc).__name__}: {exc}")
        return result

    def _fetch_into(self, result: FetchResult) -> None:
        nip = result.nip
        records = self._cached_records(nip)
        if records is not None:
            result.json_cached = True
        else:
            logger.info("[FETCH JSON] Mengambil riwayat %s...", nip)
            try:
                payload = self.client.fetch_riwayat_jabatan(nip)
                write_json_atomic(self.json_path(nip), payload)
            except FetchError as exc:
                result.fail(ERROR_FETCH, f"NIP {nip}", str(exc))
                return
            except OSError as exc:
                result.fail(ERROR_FILESYSTEM, f"NIP {nip}", f"gagal menyimpan JSON: {exc}")
                return
            records = payload.get("data") if isinstance(payload, dict) else None

        if not isinstance(records, list):
            result.fail(ERROR_INPUT, f"NIP {nip}", "respons tidak berisi array 'data'")
            return

        result.records = len(records)
        for record in records:
            if isinstance(record, dict):
                self._download_record(record, result)

    def _download_record(self, record, result: FetchResult) -> None:
        for doc_id, document in read_documents(record.get("path")).items():
            key = f"NIP {result.nip} / record {record.get('id')} / doc {doc_id}"
            staging_name = resolve_staging_filename(record.get("id"), doc_id, document.uri)
            if staging_name is None:
                result.fail(ERROR_INPUT, key, f"nama berkas tidak bisa diturunkan dari {document.uri!r}")
                continue
            destination = self.staging_files_dir / staging_name
            if destination.exists() and not self.force_files:
                logger.debug("[SKIP FILE] %s sudah ada.", staging_name)
                result.skipped += 1
                continue
            logger.info("[DOWNLOAD] %s (NIP %s)", document.name or staging_name, result.nip)
            try:
                self.client.download_to(document.uri, destination)
            except FetchError as exc:
                result.fail(ERROR_FETCH, key, str(exc))
                continue
            except OSError as exc:
                result.fail(ERROR_FILESYSTEM, key, str(exc))
                continue
            result.downloaded += 1

    def run(self, nips: Iterable[str]) -> List[FetchResult]:
        nips = list(dict.fromkeys(nips))
        self.staging_data_dir.mkdir(parents=True, exist_ok=True)
        self.staging_files_dir.mkdir(parents=True, exist_ok=True)
        logger.info("[FETCH] %d NIP akan diproses, maksimal %d paralel.", len(nips), self.concurrency)

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            results = list(executor.map(self.fetch_nip, nips))

        # Agregasi di thread utama; RunSummary tidak thread-safe
        for result in results:
            self.summary.count("nip_diproses")
            self.summary.count("json_dari_cache" if result.json_cached else "json_diunduh")
            self.summary.count("record_ditemukan", result.records)
            self.summary.count("berkas_diunduh", result.downloaded)
            self.summary.count("berkas_sudah_ada", result.skipped)
            for category, key, message in result.errors:
                self.summary.record_error(category, key, message, log=False)
        return results


def merge_staging(staging_data_dir, out_path, summary) -> int:
    """Gabungkan array ``data`` dari semua ``<nip>.json`` menjadi satu dataset."""
    staging_data_dir = Path(staging_data_dir)
    out_path = Path(out_path)
    merged = []
    for path in sorted(staging_data_dir.glob("*.json")):
        if path.resolve() == out_path.resolve():
            continue
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            summary.record_error(ERROR_INPUT, path.name, str(exc))
            continue
        records = parsed.get("data") if isinstance(parsed, dict) else None
        if not isinstance(records, list):
            logger.warning("[MERGE] %s tidak punya array 'data'; dilewati.", path.name)
            summary.count("file_tanpa_data")
            continue
        merged.extend(records)
        summary.count("file_digabung")

    write_json_atomic(out_path, {"data": merged})
    logger.info("[MERGE] %d record ditulis ke %s", len(merged), out_path)
    summary.count("record_digabung", len(merged))
    return len(merged)


def refetch_documents(client, dataset_index: DatasetIndex, record_ids, staging_files_dir, summary) -> None:
    """Unduh ulang dokumen staging untuk daftar ID record yang diberikan operator."""
    staging_files_dir = Path(staging_files_dir)
    staging_files_dir.mkdir(parents=True, exist_ok=True)
    by_id = {record.id: record for record in dataset_index.records() if record.id}
    logger.info("[LOAD] %d record terindeks; %d ID diminta.", len(by_id), len(record_ids))

    for record_id in sorted(record_ids):
        record = by_id.get(record_id)
        if record is None:
            summary.record_error(ERROR_LOOKUP, record_id, "record tidak ada di dataset")
            continue
        if not record.documents:
            summary.record_error(ERROR_LOOKUP, record_id, "record tidak punya entri path")
            continue
        for doc_id, document in record.documents.items():
            key = f"{record_id} doc {doc_id}"
            staging_name = resolve_staging_filename(record.id, doc_id, document.uri)
            if staging_name is None:
                summary.record_error(ERROR_INPUT, key, f"nama berkas tidak bisa diturunkan dari {document.uri!r}")
                continue
            summary.record_action("UNDUH_ULANG", key, staging_name)
            if summary.dry_run:
                continue
            try:
                size = client.download_to(document.uri, staging_files_dir / staging_name)
            except FetchError as exc:
                summary.record_error(ERROR_FETCH, key, str(exc))
                continue
            except OSError as exc:
                summary.record_error(ERROR_FILESYSTEM, key, str(exc))
                continue
            logger.info("[OK] %s disimpan (%d byte)", staging_name, size)
            summary.count("berkas_diunduh")
