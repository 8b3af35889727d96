"""Normalisasi NIP dan tanggal dari data BKN."""
from __future__ import annotations

import re
from datetime import date
from typing import Any, Mapping, Optional, Sequence

_LOCAL_DATE_RE = re.compile(r"(\d{2})-(\d{2})-(\d{4})", re.ASCII)

# Nama field NIP berubah-ubah antar versi API; urutan ini adalah prioritasnya.
NIP_FIELDS: tuple[str, ...] = ("nipBaru", "nip", "employee_nip", "employeeNip", "nipbaru")

REPLACEMENT_CHAR = "\ufffd"


def sanitize_text(value):
    """Buang karakter pengganti U+FFFD hasil decoding yang rusak."""
    if not isinstance(value, str):
        return value
    return value.replace(REPLACEMENT_CHAR, "")


def normalize_nip(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        # 12345.0 dari spreadsheet atau JSON numerik
        return str(int(value))
    return None


def resolve_record_nip(record: Mapping[str, Any], fields: Sequence[str] = NIP_FIELDS) -> Optional[str]:
    """Ambil nilai pertama yang ada (bukan None) sesuai urutan ``fields``."""
    for field in fields:
        value = record.get(field)
        if value is not None:
            return normalize_nip(value)
    return None


def parse_local_date(text: Any) -> Optional[date]:
    """Parse ``DD-MM-YYYY`` secara ketat; ``None`` untuk input yang tidak valid.

    Tanggal seperti ``31-02-2020`` ditolak, tidak digulirkan ke bulan berikutnya.
    """
    if not isinstance(text, str):
        return None
    match = _LOCAL_DATE_RE.fullmatch(text)
    if match is None:
        return None

    day, month, year = (int(part) for part in match.groups())
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    try:
        parsed = date(year, month, day)
    except ValueError:
        return None
    if (parsed.year, parsed.month, parsed.day) != (year, month, day):
        return None
    return parsed


def format_local_date(value: Optional[date]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d-%m-%Y")
