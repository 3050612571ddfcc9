"""Time-slot and calendar resolution for pitch bookings.

The model is instructed to pass three structured fields (``time_slot``, ``week_offset``,
``day_of_week``) and this module turns them into an absolute ``[start, end)``
interval using one business heuristic:

  Pitches are mostly rented in the evening, so a bare ``"9-10"`` means
  21:00–22:00.  Only an explicit morning qualifier (``"sabah 9-10"``) keeps
  the literal hours.  Hours of 12 and above are already unambiguous.

Hours 1–5 without a qualifier are left as-is (read as past-midnight).
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from src.errors import ValidationError

# ── Constants ────────────────────────────────────────────────────────

EVENING_SHIFT_RANGE = range(6, 12)  # 6..11 → +12
EVENING_SHIFT_HOURS = 12

_MORNING_TOKENS = ("sabah", "ogleden once", "morning", "am")

_HOUR_PAIR_RE = re.compile(r"(\d{1,2})(?:[:.](\d{2}))?\s*[-–]\s*(\d{1,2})(?:[:.](\d{2}))?")

# Monday is the first day of the week.
WEEKDAYS: dict[str, int] = {
    "pazartesi": 0,
    "sali": 1,
    "carsamba": 2,
    "persembe": 3,
    "cuma": 4,
    "cumartesi": 5,
    "pazar": 6,
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

WEEKDAY_NAMES_TR = ("Pazartesi", "Salı", "Çarşamba", "Perşembe", "Cuma", "Cumartesi", "Pazar")


def _fold(text: str) -> str:
    """Lower-case and strip Turkish diacritics (``Çarşamba`` → ``carsamba``)."""
    text = text.replace("İ", "i").replace("I", "ı").lower().replace("ı", "i")
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


# ── Time slots ───────────────────────────────────────────────────────


def has_morning_qualifier(text: str) -> bool:
    folded = _fold(text)
    words = re.findall(r"[a-z]+", folded)
    joined = " ".join(words)
    for token in _MORNING_TOKENS:
        if " " in token:
            if token in joined:
                return True
        elif any(w == token or (token == "sabah" and w.startswith("sabah")) for w in words):
            return True
    return False


def shift_hour(hour: int, morning: bool) -> int:
    """Apply the evening-default heuristic to one hour value."""
    if morning:
        return hour
    if hour in EVENING_SHIFT_RANGE:
        return hour + EVENING_SHIFT_HOURS
    return hour


def parse_time_slot(slot: str) -> tuple[int, int]:
    """Parse ``"9-10"``, ``"sabah 9-10"``, ``"18:00-19:00"`` into 24h hours.

    Returns ``(start_hour, end_hour)``.  ``end_hour`` may be 24 (midnight).

    Raises:
        ValidationError: no hour pair, hours out of range, or an empty /
            inverted interval after the evening shift.
    """
    if not slot or not slot.strip():
        raise ValidationError("Saat aralığı belirtilmedi. Örnek: \"9-10\" veya \"sabah 9-10\".")

    match = _HOUR_PAIR_RE.search(slot)
    if not match:
        raise ValidationError(
            f'"{slot}" saat aralığı anlaşılamadı. Lütfen "9-10" veya "sabah 9-10" şeklinde yazın.'
        )

    start_minutes, end_minutes = match.group(2), match.group(4)
    if (start_minutes or "00") != "00" or (end_minutes or "00") != "00":
        raise ValidationError(
            f'"{slot}" geçersiz: rezervasyonlar tam saat başında başlar ve biter (ör. "18:00-19:00").'
        )

    raw_start, raw_end = int(match.group(1)), int(match.group(3))
    if raw_start > 24 or raw_end > 24:
        raise ValidationError(f'"{slot}" geçerli bir saat aralığı değil (0-24 arası olmalı).')

    morning = has_morning_qualifier(slot)
    start, end = shift_hour(raw_start, morning), shift_hour(raw_end, morning)

    # "11-12" → 23-12 after shifting the start only; "11-12" is really 23-24.
    if not morning and raw_start in EVENING_SHIFT_RANGE and raw_end == 12:
        end = 24
    if end > 24 or end <= start:
        raise ValidationError(
            f'"{slot}" için bitiş saati başlangıçtan sonra olmalı.'
        )
    return start, end


# ── Calendar ─────────────────────────────────────────────────────────


def local_now(tz_name: str) -> datetime:
    """Naive wall-clock time in the business timezone."""
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None, microsecond=0)


def weekday_index(day: str) -> int:
    """Zero-based index from Monday for a Turkish or English weekday name."""
    key = _fold(day or "").strip()
    if key not in WEEKDAYS:
        raise ValidationError(
            "Geçersiz gün. Lütfen pazartesi-pazar arası bir gün belirtin."
        )
    return WEEKDAYS[key]


def week_start(now: datetime, week_offset: int = 0) -> date:
    """Monday of the week containing ``now``, shifted by ``week_offset`` weeks."""
    monday = now.date() - timedelta(days=now.weekday())
    return monday + timedelta(days=7 * int(week_offset))


def week_range(now: datetime, week_offset: int = 0) -> tuple[datetime, datetime]:
    """``[Monday 00:00, next Monday 00:00)`` for the requested week."""
    start = datetime.combine(week_start(now, week_offset), time.min)
    return start, start + timedelta(days=7)


def month_range(now: datetime, month_offset: int = 0) -> tuple[datetime, datetime]:
    """``[1st 00:00, 1st of next month 00:00)`` for the requested month."""
    month_index = now.year * 12 + (now.month - 1) + month_offset
    year, month = divmod(month_index, 12)
    start = datetime(year, month + 1, 1)
    next_index = month_index + 1
    next_year, next_month = divmod(next_index, 12)
    return start, datetime(next_year, next_month + 1, 1)


def resolve_date(now: datetime, week_offset: int, day: str) -> date:
    return week_start(now, week_offset) + timedelta(days=weekday_index(day))


def at_hour(day: date, hour: int) -> datetime:
    """``day`` at ``hour``:00; hour 24 rolls over to the next day."""
    return datetime.combine(day, time.min) + timedelta(hours=hour)


def resolve_interval(now: datetime, week_offset: int, day: str, slot: str) -> tuple[datetime, datetime]:
    """Turn the three tool arguments into an absolute ``[start, end)``."""
    target = resolve_date(now, week_offset, day)
    start_hour, end_hour = parse_time_slot(slot)
    return at_hour(target, start_hour), at_hour(target, end_hour)


# ── Phone numbers ────────────────────────────────────────────────────


def normalize_phone(phone: str) -> str:
    """Keep digits only: ``"0532 111 22 33"`` → ``"05321112233"``."""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise ValidationError("Telefon numarası gerekli. Lütfen müşterinin telefonunu belirtin.")
    return digits
