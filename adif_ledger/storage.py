"""Persistence layer: engine setup, sessions, the natural-key probe, the
coalescing merge writer, the contact linker and logbook queries.

The database lives in the user's data directory by default. It can be
overridden with ADIF_LEDGER_DB_PATH (a SQLite file) or ADIF_LEDGER_DB_URL (any
SQLAlchemy URL). SQLModel/SQLAlchemy 2.x are used for ORM-style access.

Everything below `session_scope` takes a Session argument; only the CLI relies
on the cached process-wide engine.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from platformdirs import user_data_dir
from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from .errors import StorageFailure
from .fields import MERGE_COLUMNS
from .models import QSO, Contact, QslRcvd, new_id
from .normalize import NormalizedQSO

logger = logging.getLogger(__name__)

APP_NAME = "ADIF Ledger"
DB_ENV_VAR = "ADIF_LEDGER_DB_PATH"
DB_URL_ENV_VAR = "ADIF_LEDGER_DB_URL"


def _default_db_path() -> Path:
    """Return the default location of the SQLite database file."""
    data_dir = Path(user_data_dir(appname=APP_NAME, appauthor=False))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "qsolog.sqlite3"


def get_db_path() -> Path:
    """Resolve the SQLite database path, honoring ADIF_LEDGER_DB_PATH if set."""
    env = os.getenv(DB_ENV_VAR)
    if env:
        p = Path(env).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    return _default_db_path()


def get_db_url() -> str:
    """Resolve the database URL; ADIF_LEDGER_DB_URL wins over the SQLite path."""
    url = os.getenv(DB_URL_ENV_VAR)
    if url:
        return url
    return f"sqlite:///{get_db_path()}"


def make_engine(url: str) -> Engine:
    """Create an engine for `url`. Raises StorageFailure if that fails."""
    try:
        if url.startswith("sqlite"):
            return create_engine(
                url,
                echo=False,
                connect_args={
                    "check_same_thread": False,
                    "timeout": 30,  # SQLite busy timeout
                },
            )
        return create_engine(
            url,
            echo=False,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )
    except Exception as e:
        raise StorageFailure(f"Failed to create database engine: {e}") from e


_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    """Create (once) and return the engine for the configured database."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = make_engine(get_db_url())
    return _engine


def reset_engine() -> None:
    """Dispose the cached engine so the next get_engine() re-reads the config."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None


def create_db_and_tables(engine: Optional[Engine] = None) -> Engine:
    """Create all tables if they don't exist yet and return the engine used."""
    engine = engine or get_engine()
    try:
        SQLModel.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to create database tables: {e}") from e
    return engine


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Yield a Session bound to `engine`, rolling back on errors."""
    session = Session(engine)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# Import path


def _natural_key(call: str, start_at: datetime):
    return (
        QSO.call == call,
        QSO.qso_date == start_at.date(),
        QSO.time_on == start_at.time(),
    )


def qso_exists(session: Session, call: str, start_at: datetime) -> bool:
    """Return True if a QSO with this exact call, date and time on is stored."""
    try:
        stmt = select(QSO.id).where(*_natural_key(call, start_at)).limit(1)
        return session.exec(stmt).first() is not None
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to check for existing QSO {call}: {e}") from e


def write_qso(
    session: Session,
    record: NormalizedQSO,
    *,
    now: datetime,
    id_factory: Callable[[], str] = new_id,
) -> bool:
    """Insert `record`, or merge it into the stored QSO with the same natural key.

    The merge never blanks a stored value: a column is only written when the
    incoming value is present. Extension maps are unioned with incoming keys
    winning. The natural key and created_at are never touched. Changes are
    flushed, not committed. Returns True for an insert, False for a merge.
    """
    try:
        if not qso_exists(session, record.call, record.start_at):
            qso = QSO(
                id=id_factory(),
                call=record.call,
                qso_date=record.qso_date,
                time_on=record.time_on,
                app_fields=dict(record.app_fields or {}),
                user_fields=dict(record.user_fields or {}),
                created_at=now,
                updated_at=now,
                **record.values,
            )
            session.add(qso)
            session.flush()
            logger.debug("Inserted %s at %s", record.call, record.start_at)
            return True

        stmt = select(QSO).where(*_natural_key(record.call, record.start_at)).with_for_update()
        qso = session.exec(stmt).one()
        for name in MERGE_COLUMNS:
            value = record.values.get(name)
            if value is not None:
                setattr(qso, name, value)
        if record.app_fields:
            qso.app_fields = {**(qso.app_fields or {}), **record.app_fields}
        if record.user_fields:
            qso.user_fields = {**(qso.user_fields or {}), **record.user_fields}
        qso.updated_at = max(now, qso.updated_at) if qso.updated_at else now
        session.add(qso)
        session.flush()
        logger.debug("Merged %s at %s", record.call, record.start_at)
        return False
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to store QSO {record.call} at {record.start_at}: {e}") from e


def link_unlinked(session: Session) -> int:
    """Link QSOs without a contact to the single contact sharing their callsign.

    Callsigns compare case-insensitively. Callsigns claimed by more than one
    contact are left alone, as are QSOs that are already linked. Returns the
    number of QSOs linked; changes are flushed, not committed.
    """
    try:
        key = func.upper(func.trim(Contact.callsign))
        stmt = (
            select(key, func.min(Contact.id))
            .where(Contact.callsign.is_not(None))
            .group_by(key)
            .having(func.count(Contact.id) == 1)
        )
        matches: Dict[str, str] = {callsign: contact_id for callsign, contact_id in session.exec(stmt)}
        if not matches:
            return 0
        unlinked = session.exec(
            select(QSO).where(QSO.contact_id.is_(None), func.upper(QSO.call).in_(list(matches)))
        ).all()
        for qso in unlinked:
            qso.contact_id = matches[qso.call.upper()]
            session.add(qso)
        session.flush()
        return len(unlinked)
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to link QSOs to contacts: {e}") from e


# Queries


def stream_qsos(
    session: Session,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> Iterator[QSO]:
    """Yield QSOs whose on-air date lies in [from_date, to_date], oldest first.

    Either bound may be None for an open end.
    """
    stmt = select(QSO)
    if from_date is not None:
        stmt = stmt.where(QSO.qso_date >= from_date)
    if to_date is not None:
        stmt = stmt.where(QSO.qso_date <= to_date)
    stmt = stmt.order_by(QSO.qso_date, QSO.time_on, QSO.call)
    try:
        yield from session.exec(stmt)
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to read QSOs for export: {e}") from e


def get_qso(session: Session, qso_id: str) -> Optional[QSO]:
    """Fetch a QSO by id, or None if missing."""
    try:
        return session.get(QSO, qso_id)
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to retrieve QSO {qso_id}: {e}") from e


def get_qso_by_key(session: Session, call: str, start_at: datetime) -> Optional[QSO]:
    try:
        return session.exec(select(QSO).where(*_natural_key(call.upper(), start_at))).first()
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to retrieve QSO {call} at {start_at}: {e}") from e


def list_qsos(session: Session, limit: int = 100, call: Optional[str] = None) -> List[QSO]:
    """Return recent QSOs, optionally filtering by callsign substring."""
    try:
        stmt = select(QSO)
        if call:
            stmt = stmt.where(QSO.call.ilike(f"%{call}%"))
        stmt = stmt.order_by(QSO.qso_date.desc(), QSO.time_on.desc()).limit(limit)
        return list(session.exec(stmt))
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to list QSOs: {e}") from e


def qsos_by_call(session: Session, call: str) -> List[QSO]:
    """All QSOs with `call` (any case), most recent first."""
    try:
        stmt = (
            select(QSO)
            .where(func.upper(QSO.call) == call.strip().upper())
            .order_by(QSO.qso_date.desc(), QSO.time_on.desc())
        )
        return list(session.exec(stmt))
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to query QSOs for {call}: {e}") from e


def count_qsos(session: Session) -> int:
    try:
        return session.exec(select(func.count()).select_from(QSO)).one()
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to count QSOs: {e}") from e


def count_unique_countries(session: Session) -> int:
    try:
        stmt = select(func.count(func.distinct(QSO.country))).where(
            QSO.country.is_not(None), QSO.country != ""
        )
        return session.exec(stmt).one()
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to count unique countries: {e}") from e


def latest_qso_time(session: Session) -> Optional[datetime]:
    """On-air instant of the most recent QSO, or None for an empty log."""
    try:
        stmt = select(QSO).order_by(QSO.qso_date.desc(), QSO.time_on.desc()).limit(1)
        latest = session.exec(stmt).first()
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to fetch latest QSO time: {e}") from e
    return latest.start_at if latest else None


def find_closest_qso(
    session: Session,
    call: str,
    when: datetime,
    tolerance_minutes: int = 10,
) -> Optional[QSO]:
    """Find the QSO with `call` nearest to `when`, within the tolerance window."""
    window = timedelta(minutes=tolerance_minutes)
    try:
        stmt = select(QSO).where(
            func.upper(QSO.call) == call.strip().upper(),
            QSO.qso_date >= (when - window).date(),
            QSO.qso_date <= (when + window).date(),
        )
        candidates = list(session.exec(stmt))
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to search QSO {call} near {when}: {e}") from e

    best: Optional[QSO] = None
    best_delta: Optional[timedelta] = None
    for qso in candidates:
        delta = abs(qso.start_at - when)
        if delta <= window and (best_delta is None or delta < best_delta):
            best, best_delta = qso, delta
    return best


def paper_qsl_hall_of_fame(session: Session) -> List[QSO]:
    """One QSO per callsign with a paper QSL received, sorted by callsign.

    A row with an operator name is preferred; otherwise the most recent one.
    """
    try:
        stmt = (
            select(QSO)
            .where(QSO.qsl_rcvd == QslRcvd.YES)
            .order_by(QSO.qso_date.desc(), QSO.time_on.desc())
        )
        rows = list(session.exec(stmt))
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to query paper QSL hall of fame: {e}") from e

    chosen: Dict[str, QSO] = {}
    for qso in rows:
        key = qso.call.upper()
        current = chosen.get(key)
        if current is None or (not current.name and qso.name):
            chosen[key] = qso
    return [chosen[k] for k in sorted(chosen)]


def delete_qso(session: Session, qso_id: str) -> bool:
    """Delete a QSO by id, returning True if it existed and was removed."""
    try:
        q = session.get(QSO, qso_id)
        if not q:
            return False
        session.delete(q)
        session.commit()
        return True
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to delete QSO {qso_id}: {e}") from e


def add_contact(
    session: Session,
    callsign: str,
    name: Optional[str] = None,
    *,
    id_factory: Callable[[], str] = new_id,
) -> Contact:
    """Persist a contact with a normalized (trimmed, uppercased) callsign."""
    try:
        contact = Contact(id=id_factory(), callsign=callsign.strip().upper() or None, name=name)
        session.add(contact)
        session.commit()
        session.refresh(contact)
        return contact
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to save contact {callsign}: {e}") from e
