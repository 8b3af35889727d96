"""Membaca dataset gabungan BKN dan mengindeksnya per (NIP, TMT)."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .errors import DatasetError
from .normalisasi import NIP_FIELDS, parse_local_date, resolve_record_nip, sanitize_text

logger = logging.getLogger(__name__)


class DatasetKey(NamedTuple):
    nip: str
    tmt: date


@dataclass(frozen=True)
class DocumentRef:
    uri: str
    name: Optional[str] = None


@dataclass(frozen=True)
class ExternalRecord:
    """Satu entri riwayat jabatan dari BKN. Read-only selama satu run."""

    id: Optional[str]
    nip: str
    tmt: date
    tmt_raw: str
    nama_jabatan: Optional[str] = None
    unor_nama: Optional[str] = None
    nomor_sk: Optional[str] = None
    tanggal_sk: Optional[str] = None
    documents: Dict[str, DocumentRef] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)
    # Field teks yang nilainya bukan string; dikosongkan di atas
    malformed_fields: Tuple[str, ...] = ()

    @property
    def key(self) -> DatasetKey:
        return DatasetKey(self.nip, self.tmt)

    @property
    def has_path_entries(self) -> bool:
        path = self.raw.get("path")
        return isinstance(path, dict) and len(path) > 0

    def document(self, doc_id: str) -> Optional[DocumentRef]:
        return self.documents.get(str(doc_id))


@dataclass
class DroppedRecord:
    record_id: Optional[str]
    reason: str


# Field teks yang dipakai untuk nama berkas dan payload trx_jabatan
TEXT_FIELDS = ("namaJabatan", "namaUnor", "unorNama", "nomorSk", "tanggalSk")


def non_text_fields(raw: Mapping[str, Any]) -> List[str]:
    return [name for name in TEXT_FIELDS if raw.get(name) is not None and not isinstance(raw.get(name), str)]


def read_documents(raw_path: Any) -> Dict[str, DocumentRef]:
    documents: Dict[str, DocumentRef] = {}
    if not isinstance(raw_path, dict):
        return documents
    for doc_id, info in raw_path.items():
        if not isinstance(info, dict):
            continue
        uri = info.get("dok_uri")
        if not isinstance(uri, str) or not uri:
            continue
        documents[str(doc_id)] = DocumentRef(uri=uri, name=info.get("dok_nama"))
    return documents


def _text(raw: Mapping[str, Any], name: str) -> Optional[str]:
    value = raw.get(name)
    return value if isinstance(value, str) else None


def to_external_record(raw: Mapping[str, Any], nip: str, tmt: date) -> ExternalRecord:
    record_id = raw.get("id")
    return ExternalRecord(
        id=str(record_id) if record_id is not None else None,
        nip=nip,
        tmt=tmt,
        tmt_raw=raw.get("tmtJabatan"),
        nama_jabatan=_text(raw, "namaJabatan"),
        unor_nama=_text(raw, "namaUnor") or _text(raw, "unorNama"),
        nomor_sk=sanitize_text(_text(raw, "nomorSk")),
        tanggal_sk=_text(raw, "tanggalSk"),
        documents=read_documents(raw.get("path")),
        raw=raw,
        malformed_fields=tuple(non_text_fields(raw)),
    )


def parse_dataset_text(text: str, *, source: str = "<dataset>") -> List[Any]:
    try:
        parsed = json.loads(sanitize_text(text))
    except json.JSONDecodeError as exc:
        raise DatasetError(f"{source} bukan JSON yang valid: {exc}") from exc

    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict) and isinstance(parsed.get("data"), list):
        return parsed["data"]
    raise DatasetError(f"{source} tidak berisi array atau objek dengan array 'data'.")


def load_dataset(path: Path) -> List[Any]:
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise DatasetError(f"Gagal membaca dataset {path}: {exc}") from exc
    # Byte yang tidak valid menjadi U+FFFD lalu dibuang oleh sanitize_text
    return parse_dataset_text(raw.decode("utf-8", errors="replace"), source=str(path))


class DatasetIndex:
    """Lookup O(1) dari (NIP, TMT) ke daftar ExternalRecord.

    Urutan iterasi grup mengikuti kemunculan pertama di dataset.
    """

    def __init__(self) -> None:
        self._groups: Dict[DatasetKey, List[ExternalRecord]] = {}
        self.dropped: List[DroppedRecord] = []

    def add(self, record: ExternalRecord) -> None:
        self._groups.setdefault(record.key, []).append(record)

    def get(self, nip: str, tmt: date) -> List[ExternalRecord]:
        return list(self._groups.get(DatasetKey(nip, tmt), ()))

    def __contains__(self, key: object) -> bool:
        return key in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[DatasetKey]:
        return iter(self._groups)

    def items(self):
        return self._groups.items()

    def records(self) -> Iterator[ExternalRecord]:
        for group in self._groups.values():
            yield from group

    def record_ids(self) -> set[str]:
        return {record.id for record in self.records() if record.id}

    def by_nip(self) -> Dict[str, List[ExternalRecord]]:
        grouped: Dict[str, List[ExternalRecord]] = {}
        for record in self.records():
            grouped.setdefault(record.nip, []).append(record)
        return grouped


def build_index(
    records: Iterable[Any],
    *,
    nip_fields: Sequence[str] = NIP_FIELDS,
    nip_filter: Optional[set[str]] = None,
) -> DatasetIndex:
    index = DatasetIndex()
    for raw in records:
        if not isinstance(raw, dict):
            index.dropped.append(DroppedRecord(None, "bukan objek"))
            continue

        record_id = raw.get("id")
        nip = resolve_record_nip(raw, nip_fields)
        if not nip:
            logger.warning("[DATASET] Record %s tidak memiliki NIP. Dilewati.", record_id or "<tanpa-id>")
            index.dropped.append(DroppedRecord(record_id, "NIP tidak ditemukan"))
            continue

        if nip_filter and nip not in nip_filter:
            continue

        tmt = parse_local_date(raw.get("tmtJabatan"))
        if tmt is None:
            logger.warning("[DATASET] Record %s (NIP %s) memiliki TMT tidak valid %r. Dilewati.",
                           record_id, nip, raw.get("tmtJabatan"))
            index.dropped.append(DroppedRecord(record_id, f"TMT tidak valid: {raw.get('tmtJabatan')!r}"))
            continue

        index.add(to_external_record(raw, nip, tmt))
    return index


def load_index(path: Path, *, nip_filter: Optional[set[str]] = None) -> DatasetIndex:
    index = build_index(load_dataset(path), nip_filter=nip_filter)
    logger.info("[DATASET] %d grup NIP/TMT terindeks dari %s (%d record dilewati).",
                len(index), path, len(index.dropped))
    return index


def split_id_list(text: str) -> List[str]:
    return [value for value in re.split(r"[\s,]+", text) if value]


def load_id_list(path: Path) -> set[str]:
    """Baca daftar ID/NIP dari file (dipisah koma, spasi, atau baris baru)."""
    path = Path(path)
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DatasetError(f"Gagal membaca daftar ID {path}: {exc}") from exc
    return set(split_id_list(contents))
