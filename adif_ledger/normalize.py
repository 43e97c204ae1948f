"""Turn raw ADIF field maps into typed values ready for storage.

Every parser here is tolerant: a value that cannot be interpreted collapses to
None (absent) instead of raising, so one bad field never costs the whole record.
A record is only skipped when its natural key (call, date, time on) or its mode
cannot be built.
"""

from __future__ import annotations

import logging
import math
import re
import string
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from .fields import BOOL, DATE, FIELDS, FLOAT, INT, NATURAL_KEY, TIME, VOCAB, FieldSpec

logger = logging.getLogger(__name__)

APP_FIELD_PREFIX = "app_"

_TRUE = {"Y", "T", "TRUE", "1"}
_FALSE = {"N", "F", "FALSE", "0"}
_INT_RE = re.compile(r"[+-]?[0-9]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass
class NormalizedQSO:
    """One record after normalization.

    `values` holds every known non-key column; None means the incoming record
    had nothing usable for it. `rejected` lists fields that carried text but
    failed to parse.
    """

    call: str
    start_at: datetime
    values: Dict[str, Any] = field(default_factory=dict)
    app_fields: Optional[Dict[str, Any]] = None
    user_fields: Optional[Dict[str, Any]] = None
    rejected: List[str] = field(default_factory=list)

    @property
    def qso_date(self) -> date:
        return self.start_at.date()

    @property
    def time_on(self) -> time:
        return self.start_at.time()


def _text(value: Union[bytes, str, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def trim_optional(value: Optional[str]) -> Optional[str]:
    """Strip whitespace; return None if nothing is left."""
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def parse_int(value: Optional[str]) -> Optional[int]:
    s = trim_optional(value)
    if s is None or not _INT_RE.fullmatch(s):
        return None
    return int(s)


def parse_float(value: Optional[str]) -> Optional[float]:
    s = trim_optional(value)
    if s is None or "_" in s:
        return None
    try:
        parsed = float(s)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse an ADIF date - exactly eight digits, YYYYMMDD."""
    s = trim_optional(value)
    if s is None or len(s) != 8 or not (s.isascii() and s.isdigit()):
        return None
    try:
        return datetime.strptime(s, "%Y%m%d").date()
    except ValueError:
        return None


def parse_time(value: Optional[str]) -> Optional[time]:
    """Parse an ADIF time - HHMMSS, or HHMM padded with zero seconds."""
    s = trim_optional(value)
    if s is None or not (s.isascii() and s.isdigit()):
        return None
    if len(s) == 4:
        s += "00"
    if len(s) != 6:
        return None
    try:
        return datetime.strptime(s, "%H%M%S").time()
    except ValueError:
        return None


def parse_timestamp(date_value: Optional[str], time_value: Optional[str]) -> Optional[datetime]:
    """Combine an ADIF date and time into a naive UTC datetime."""
    d = parse_date(date_value)
    t = parse_time(time_value)
    if d is None or t is None:
        return None
    return datetime.combine(d, t)


def parse_bool(value: Optional[str]) -> Optional[bool]:
    s = (value or "").strip().upper()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return None


def parse_vocab(value: Optional[str], enum_cls: type[Enum]) -> Optional[Enum]:
    """Map a token onto a controlled vocabulary; unknown tokens are absent."""
    s = (value or "").strip().upper()
    if not s:
        return None
    try:
        return enum_cls(s)
    except ValueError:
        return None


def _convert(spec: FieldSpec, value: Optional[str]) -> Any:
    if spec.kind == INT:
        return parse_int(value)
    if spec.kind == FLOAT:
        return parse_float(value)
    if spec.kind == DATE:
        return parse_date(value)
    if spec.kind == TIME:
        return parse_time(value)
    if spec.kind == BOOL:
        return parse_bool(value)
    if spec.kind == VOCAB:
        return parse_vocab(value, spec.vocab)
    return trim_optional(value)


def _letters_and_spaces(value: str) -> bool:
    return all(c == " " or c in string.ascii_letters for c in value)


def _phrase(value: str) -> str:
    return " ".join(w for w in _NON_ALNUM_RE.split(value.lower()) if w)


def _contains_phrase(haystack: str, needle: str) -> bool:
    return f" {needle} " in f" {haystack} "


def normalize_county(cnty: Optional[str], country: Optional[str]) -> Optional[str]:
    """Drop a county that merely repeats the country.

    Some loggers write the DXCC entity name into CNTY (e.g. "United Arab
    Emirates" for both). A county equal to the country, or a letters-only
    county whose words contain or are contained in the country's, is dropped.
    """
    cnty = trim_optional(cnty)
    if cnty is None:
        return None
    country = trim_optional(country)
    if country is None:
        return cnty
    if cnty.casefold() == country.casefold():
        return None
    if _letters_and_spaces(cnty):
        cnty_phrase = _phrase(cnty)
        country_phrase = _phrase(country)
        if cnty_phrase and country_phrase and (
            _contains_phrase(country_phrase, cnty_phrase)
            or _contains_phrase(cnty_phrase, country_phrase)
        ):
            return None
    return cnty


def normalize_extension_map(fields: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Clean an extension map: trim keys and string values, drop empties.

    Non-string values are kept verbatim. Returns None when nothing survives.
    """
    if not fields:
        return None
    out: Dict[str, Any] = {}
    for key, value in fields.items():
        k = str(key).strip()
        if not k or value is None:
            continue
        if isinstance(value, (bytes, bytearray)):
            value = _text(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        out[k] = value
    return out or None


def normalize_record(raw: Mapping[str, Union[bytes, str]]) -> Optional[NormalizedQSO]:
    """Normalize one raw ADIF record, or return None if it must be skipped."""
    text = {k.strip().lower(): _text(v) for k, v in raw.items()}

    call = trim_optional(text.get("call"))
    if call is None:
        logger.warning("Skipping record without CALL")
        return None
    call = call.upper()

    start_at = parse_timestamp(text.get("qso_date"), text.get("time_on"))
    if start_at is None:
        logger.warning(
            "Skipping %s: invalid QSO_DATE/TIME_ON %r/%r",
            call,
            text.get("qso_date"),
            text.get("time_on"),
        )
        return None

    record = NormalizedQSO(call=call, start_at=start_at)
    for name, spec in FIELDS.items():
        if name in NATURAL_KEY:
            continue
        value = text.get(name)
        parsed = _convert(spec, value)
        if parsed is None and trim_optional(value) is not None:
            record.rejected.append(name)
            logger.warning("Ignoring unparseable %s=%r for %s at %s", name, value, call, start_at)
        record.values[name] = parsed

    if record.values["mode"] is None:
        logger.warning("Skipping %s at %s: no MODE", call, start_at)
        return None

    if record.values["qso_date_off"] is None and record.values["time_off"] is not None:
        record.values["qso_date_off"] = start_at.date()

    record.values["cnty"] = normalize_county(record.values["cnty"], record.values["country"])

    app: Dict[str, Any] = {}
    user: Dict[str, Any] = {}
    for name, value in text.items():
        if name in FIELDS:
            continue
        if name.startswith(APP_FIELD_PREFIX):
            app[name] = value
        else:
            user[name] = value
    record.app_fields = normalize_extension_map(app)
    record.user_fields = normalize_extension_map(user)
    return record
