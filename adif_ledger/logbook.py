"""Import/export orchestration for the QSO logbook.

`Logbook` carries everything an operation needs (engine, clock, id factory),
so callers and tests never depend on process-wide state.

Import pipeline per record: parse -> normalize -> natural-key probe -> insert
or coalescing merge -> commit. Records are applied strictly in input order and
each one is committed on its own, so an interrupted batch keeps the prefix it
already stored. After the loop one linker pass attaches new QSOs to contacts.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import storage
from .adif import AdifReader, AdifSource, dump_adif
from .errors import ImportCanceled, LogbookError, StorageFailure
from .fields import FIELDS, format_value
from .models import QSO, new_id, now_utc
from .normalize import normalize_record

logger = logging.getLogger(__name__)

PROGRAM_ID = "ADIF Ledger"

_ADIF_NAME_RE = re.compile(r"[A-Za-z0-9_]+")


@dataclass
class ImportResult:
    """Counters for one import batch. `processed` = inserted + updated."""

    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    rejected_fields: int = 0
    linked: int = 0


def qso_to_adif_fields(qso: QSO) -> Dict[str, str]:
    """Flatten a stored QSO into ADIF field text, skipping absent values.

    User-defined fields follow the standard ones. App fields are included too;
    the serializer is what keeps them out of exported files.
    """
    out: Dict[str, str] = {}
    for name, spec in FIELDS.items():
        text = format_value(spec, getattr(qso, name))
        if text:
            out[name] = text
    for extra in (qso.user_fields, qso.app_fields):
        for key, value in (extra or {}).items():
            if key in out or value is None or not _ADIF_NAME_RE.fullmatch(key):
                continue
            text = value if isinstance(value, str) else str(value)
            if text:
                out[key] = text
    return out


def _as_date(value: Union[date, datetime, None]) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


class Logbook:
    """The import/export surface over one database engine.

    `clock` must return the current UTC time (naive or aware) and is only used
    for created_at/updated_at. `id_factory` names new rows.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        clock: Callable[[], datetime] = now_utc,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self.engine = engine
        self._clock = clock
        self._id_factory = id_factory

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(UTC).replace(tzinfo=None)
        return now

    def import_adif(
        self,
        source: AdifSource,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ImportResult:
        """Import an ADIF document; see import_records for the semantics."""
        return self.import_records(AdifReader(source), cancel=cancel)

    def import_records(
        self,
        records: Iterable[Mapping[str, Any]],
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ImportResult:
        """Ingest raw field maps in order, merging duplicates by natural key.

        Raises MalformedFormat, StorageFailure or ImportCanceled; each carries
        `processed`, the number of records committed before the failure.
        Records that cannot be normalized are skipped and counted.
        """
        result = ImportResult()
        with storage.session_scope(self.engine) as session:
            try:
                for raw in records:
                    if cancel is not None and cancel.is_set():
                        raise ImportCanceled(
                            f"Import canceled after {result.processed} record(s)"
                        )
                    record = normalize_record(raw)
                    if record is None:
                        result.skipped += 1
                        continue
                    result.rejected_fields += len(record.rejected)

                    inserted = storage.write_qso(
                        session, record, now=self._now(), id_factory=self._id_factory
                    )
                    try:
                        session.commit()
                    except SQLAlchemyError as e:
                        raise StorageFailure(
                            f"Failed to commit QSO {record.call} at {record.start_at}: {e}"
                        ) from e

                    result.processed += 1
                    if inserted:
                        result.inserted += 1
                    else:
                        result.updated += 1
            except LogbookError as e:
                e.processed = result.processed
                logger.warning("Import stopped after %d record(s): %s", result.processed, e)
                raise

        result.linked = self._link_quietly()
        logger.info(
            "Imported %d QSO(s): %d new, %d merged, %d skipped, %d field(s) rejected, %d linked",
            result.processed,
            result.inserted,
            result.updated,
            result.skipped,
            result.rejected_fields,
            result.linked,
        )
        return result

    def link_unlinked(self) -> int:
        """Link unlinked QSOs to contacts by callsign and commit."""
        with storage.session_scope(self.engine) as session:
            linked = storage.link_unlinked(session)
            try:
                session.commit()
            except SQLAlchemyError as e:
                raise StorageFailure(f"Failed to commit contact links: {e}") from e
        if linked:
            logger.info("Auto-linked %d QSO(s) to contacts by callsign", linked)
        return linked

    def _link_quietly(self) -> int:
        # A failed link pass must not fail the import that preceded it
        try:
            return self.link_unlinked()
        except (StorageFailure, SQLAlchemyError) as e:
            logger.warning("Failed to auto-link QSOs to contacts: %s", e)
            return 0

    def export_adif(
        self,
        from_date: Union[date, datetime, None] = None,
        to_date: Union[date, datetime, None] = None,
    ) -> bytes:
        """Export QSOs whose on-air date is within [from_date, to_date] as ADIF.

        Either bound may be None. Raises StorageFailure if the read fails.
        """
        with storage.session_scope(self.engine) as session:
            records = [
                qso_to_adif_fields(q)
                for q in storage.stream_qsos(session, _as_date(from_date), _as_date(to_date))
            ]
        header = {
            "created_timestamp": self._now().strftime("%Y%m%d %H%M%S"),
            "programid": PROGRAM_ID,
        }
        logger.info("Exporting %d QSO(s)", len(records))
        return dump_adif(records, header_fields=header)
