"""ADIF reader/writer.

ADIF is a tag-prefixed text format: every field is written as
``<NAME:LEN[:TYPE]>VALUE`` where LEN is the byte length of VALUE, records end
with ``<EOR>`` and an optional header ends with ``<EOH>``.

The reader works on bytes so declared lengths are honoured exactly, even for
multi-byte UTF-8 values. It yields one ``{lower-case name: raw bytes}`` dict
per record and does not interpret values; that is the normalizer's job.
ADIF spec: https://www.adif.org/
"""

from __future__ import annotations

import logging
from typing import BinaryIO, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from .errors import MalformedFormat, TruncatedField

logger = logging.getLogger(__name__)

ADIF_VERSION = "3.1.6"

# Vendor-specific fields never leave the logbook
APP_PREFIX = "APP_"

AdifSource = Union[bytes, bytearray, memoryview, str, BinaryIO]
RawRecord = Dict[str, bytes]


def _parse_length(text: str) -> Optional[int]:
    text = text.strip()
    if not text.isascii() or not text.isdigit():
        return None
    return int(text)


class AdifReader:
    """Lazily iterate the records of an ADIF document.

    Accepts bytes, a str (encoded as UTF-8) or a binary file object. Once the
    ``<EOH>`` has been consumed, `header` maps lower-case header field names to
    their decoded values and `comment` holds any free text before the first tag.

    Raises MalformedFormat when leading text is not followed by an ``<EOH>`` or a
    tag is never closed, and TruncatedField when a declared length runs past the
    end of the data. A field with an unusable length prefix drops its record
    with a warning instead.
    """

    def __init__(self, source: AdifSource) -> None:
        if hasattr(source, "read"):
            source = source.read()
        if isinstance(source, str):
            source = source.encode("utf-8")
        self._data = bytes(source)
        self._lower = self._data.lower()
        self.header: Dict[str, str] = {}
        self.comment = ""

    def __iter__(self) -> Iterator[RawRecord]:
        return self._records()

    def _skip_to_eor(self, pos: int) -> int:
        idx = self._lower.find(b"<eor>", pos)
        return len(self._data) if idx == -1 else idx

    def _records(self) -> Iterator[RawRecord]:
        data = self._data
        n = len(data)

        start = 0
        while start < n and data[start : start + 1].isspace():
            start += 1
        if start == n:
            return

        # Text before the first tag means a header is present and must be closed
        has_preamble = data[start : start + 1] != b"<"
        pos = start
        if has_preamble:
            lt = data.find(b"<", start)
            if lt == -1:
                raise MalformedFormat("no ADIF header found")
            self.comment = data[start:lt].decode("utf-8", errors="replace").strip()
            pos = lt

        in_header = True
        fields: RawRecord = {}
        malformed = False
        while True:
            lt = data.find(b"<", pos)
            if lt == -1:
                break
            gt = data.find(b">", lt + 1)
            if gt == -1:
                raise MalformedFormat(f"unterminated tag at byte {lt}")
            tag = data[lt + 1 : gt].decode("utf-8", errors="replace")
            parts = tag.split(":")
            name = parts[0].strip().lower()
            pos = gt + 1

            if len(parts) == 1 and name == "eoh":
                if in_header:
                    self.header = {
                        k: v.decode("utf-8", errors="replace") for k, v in fields.items()
                    }
                    in_header = False
                else:
                    logger.warning("Ignoring stray <EOH> at byte %d", lt)
                fields = {}
                malformed = False
                continue

            if len(parts) == 1 and name == "eor":
                if in_header and has_preamble:
                    raise MalformedFormat("<EOR> found before the <EOH> header terminator")
                in_header = False
                if malformed:
                    logger.warning("Skipped malformed ADIF record ending at byte %d", lt)
                elif fields:
                    yield fields
                fields = {}
                malformed = False
                continue

            length = _parse_length(parts[1]) if 2 <= len(parts) <= 3 else None
            if length is None or not name:
                if in_header:
                    # Only the bad header field is lost when <EOH> comes before any <EOR>
                    eoh = self._lower.find(b"<eoh>", pos)
                    eor = self._lower.find(b"<eor>", pos)
                    if eoh != -1 and (eor == -1 or eoh < eor):
                        logger.warning("Ignoring malformed header tag <%s>", tag)
                        pos = eoh
                        continue
                    if has_preamble:
                        logger.warning("Ignoring malformed header tag <%s>", tag)
                        continue
                logger.warning("Malformed length prefix in tag <%s>; skipping record", tag)
                malformed = True
                pos = self._skip_to_eor(pos)
                continue

            end = pos + length
            if end > n:
                raise TruncatedField(
                    f"field {name!r} declares {length} bytes but only {n - pos} remain"
                )
            fields[name] = data[pos:end]
            pos = end

        if in_header and has_preamble:
            raise MalformedFormat("missing <EOH> header terminator")
        if fields and not in_header:
            logger.warning("Dropped %d trailing field(s) with no <EOR>", len(fields))


def iter_records(source: AdifSource) -> Iterator[RawRecord]:
    """Yield raw field maps from an ADIF document."""
    return iter(AdifReader(source))


def read_records(source: AdifSource) -> List[RawRecord]:
    return list(AdifReader(source))


def make_field(name: str, value: str) -> str:
    """Return one ADIF token, like ``<CALL:5>K1ABC``; LEN counts UTF-8 bytes."""
    return f"<{name}:{len(value.encode('utf-8'))}>{value}"


def dump_adif(
    records: Iterable[Mapping[str, Optional[str]]],
    *,
    header_fields: Optional[Mapping[str, str]] = None,
) -> bytes:
    """Serialize records to ADIF bytes.

    Field names are uppercased, empty values are omitted and any ``APP_*`` field
    is suppressed. Each record ends with ``<EOR>`` and a newline.
    """
    header = [make_field("ADIF_VER", ADIF_VERSION)]
    for name, value in (header_fields or {}).items():
        if value:
            header.append(make_field(name.upper(), value))
    header.append("<EOH>\n")

    out: List[str] = ["".join(header)]
    for rec in records:
        tokens = [
            make_field(name.upper(), value)
            for name, value in rec.items()
            if value and not name.upper().startswith(APP_PREFIX)
        ]
        tokens.append("<EOR>\n")
        out.append("".join(tokens))
    return "".join(out).encode("utf-8")
