from datetime import date, datetime, time

import pytest
from sqlmodel import select

from adif_ledger import storage
from adif_ledger.errors import StorageFailure
from adif_ledger.models import QSO, Contact, QslRcvd
from adif_ledger.normalize import normalize_record
from adif_ledger.storage import (
    add_contact,
    count_qsos,
    count_unique_countries,
    delete_qso,
    find_closest_qso,
    get_qso,
    get_qso_by_key,
    latest_qso_time,
    link_unlinked,
    list_qsos,
    paper_qsl_hall_of_fame,
    qso_exists,
    qsos_by_call,
    stream_qsos,
    write_qso,
)

T0 = datetime(2024, 1, 1, 0, 0, 0)
T1 = datetime(2024, 2, 1, 0, 0, 0)


def _record(call="K1ABC", qso_date="20240704", time_on="123456", mode="SSB", **extra):
    raw = {"call": call, "qso_date": qso_date, "time_on": time_on, "mode": mode, **extra}
    return normalize_record({k: v.encode("utf-8") for k, v in raw.items()})


def _store(session, record, now=T0):
    inserted = write_qso(session, record, now=now)
    session.commit()
    return inserted


def test_insert_then_probe(session):
    rec = _record(name="Alice")
    assert not qso_exists(session, rec.call, rec.start_at)
    assert _store(session, rec) is True
    assert qso_exists(session, "K1ABC", datetime(2024, 7, 4, 12, 34, 56))
    assert not qso_exists(session, "K1ABC", datetime(2024, 7, 4, 12, 34, 57))

    q = get_qso_by_key(session, "k1abc", rec.start_at)
    assert q is not None
    assert q.name == "Alice"
    assert q.created_at == T0
    assert q.updated_at == T0
    assert q.app_fields == {}
    assert get_qso(session, q.id).id == q.id


def test_merge_fills_gaps_and_never_blanks(session):
    _store(session, _record(name="Alice", qth="Boston", qsl_rcvd="N"))
    inserted = _store(
        session,
        _record(mode="USB", gridsquare="FN42", qsl_rcvd="Y", qth=""),
        now=T1,
    )
    assert inserted is False
    assert count_qsos(session) == 1

    q = get_qso_by_key(session, "K1ABC", datetime(2024, 7, 4, 12, 34, 56))
    session.refresh(q)
    assert q.mode == "USB"
    assert q.name == "Alice"
    assert q.qth == "Boston"
    assert q.gridsquare == "FN42"
    assert q.qsl_rcvd is QslRcvd.YES
    assert q.created_at == T0
    assert q.updated_at == T1


def test_merge_keeps_newer_updated_at(session):
    _store(session, _record(), now=T1)
    _store(session, _record(name="Late"), now=T0)
    q = session.exec(select(QSO)).one()
    assert q.name == "Late"
    assert q.updated_at == T1


def test_merge_unions_extension_maps(session):
    _store(session, _record(app_x_a="1", userdef1="one"))
    _store(session, _record(app_x_a="2", app_x_b="3"))
    q = session.exec(select(QSO)).one()
    session.refresh(q)
    assert q.app_fields == {"app_x_a": "2", "app_x_b": "3"}
    assert q.user_fields == {"userdef1": "one"}


def test_distinct_times_are_distinct_qsos(session):
    _store(session, _record(time_on="1234"))
    _store(session, _record(time_on="123401"))
    _store(session, _record(call="K2XYZ", time_on="1234"))
    assert count_qsos(session) == 3


def test_linker_links_exactly_one_match(session):
    _store(session, _record(call="K1ABC"))
    _store(session, _record(call="K2XYZ"))
    _store(session, _record(call="W1AW"))
    solo = add_contact(session, " k1abc ")
    add_contact(session, "K2XYZ", name="One")
    add_contact(session, "k2xyz", name="Two")

    assert solo.callsign == "K1ABC"
    assert link_unlinked(session) == 1
    session.commit()

    by_call = {q.call: q.contact_id for q in session.exec(select(QSO))}
    assert by_call == {"K1ABC": solo.id, "K2XYZ": None, "W1AW": None}

    # Already-linked rows are not counted again
    assert link_unlinked(session) == 0


def test_linker_without_contacts(session):
    _store(session, _record())
    assert link_unlinked(session) == 0


def test_linker_ignores_contacts_without_callsign(session):
    _store(session, _record())
    session.add(Contact(callsign=None, name="Nobody"))
    session.commit()
    assert link_unlinked(session) == 0


def test_stream_qsos_filters_by_on_air_date(session):
    for d in ("20240101", "20240115", "20240201"):
        _store(session, _record(qso_date=d))
    got = [q.qso_date for q in stream_qsos(session, date(2024, 1, 10), date(2024, 2, 1))]
    assert got == [date(2024, 1, 15), date(2024, 2, 1)]
    assert len(list(stream_qsos(session))) == 3
    assert len(list(stream_qsos(session, to_date=date(2024, 1, 1)))) == 1


def test_queries(session):
    _store(session, _record(call="K1ABC", qso_date="20240101", country="United States"))
    _store(session, _record(call="K1ABC", qso_date="20240301", country="United States"))
    _store(session, _record(call="DL1XX", qso_date="20240201", country="Germany"))

    assert count_qsos(session) == 3
    assert count_unique_countries(session) == 2
    assert latest_qso_time(session) == datetime(2024, 3, 1, 12, 34, 56)
    assert [q.qso_date for q in qsos_by_call(session, "k1abc")] == [
        date(2024, 3, 1),
        date(2024, 1, 1),
    ]
    assert [q.call for q in list_qsos(session, limit=2)] == ["K1ABC", "DL1XX"]
    assert [q.call for q in list_qsos(session, call="dl1")] == ["DL1XX"]


def test_latest_qso_time_empty(session):
    assert latest_qso_time(session) is None


def test_find_closest_qso(session):
    _store(session, _record(time_on="120000"))
    _store(session, _record(time_on="120800"))
    near = find_closest_qso(session, "K1ABC", datetime(2024, 7, 4, 12, 6, 0))
    assert near.time_on == time(12, 8, 0)
    assert find_closest_qso(session, "K1ABC", datetime(2024, 7, 4, 13, 0, 0)) is None


def test_paper_qsl_hall_of_fame(session):
    _store(session, _record(call="K1ABC", qso_date="20240101", qsl_rcvd="Y", name="Alice"))
    _store(session, _record(call="K1ABC", qso_date="20240301", qsl_rcvd="Y"))
    _store(session, _record(call="AA1AA", qso_date="20240201", qsl_rcvd="Y"))
    _store(session, _record(call="W1AW", qsl_rcvd="N"))
    rows = paper_qsl_hall_of_fame(session)
    assert [q.call for q in rows] == ["AA1AA", "K1ABC"]
    assert rows[1].name == "Alice"


def test_delete_qso(session):
    _store(session, _record())
    q = session.exec(select(QSO)).one()
    assert delete_qso(session, q.id) is True
    assert delete_qso(session, q.id) is False
    assert count_qsos(session) == 0


def test_write_failure_is_storage_failure(session, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(storage, "qso_exists", boom)
    with pytest.raises(StorageFailure):
        write_qso(session, _record(), now=T0)


def test_db_path_env_override(tmp_path, monkeypatch):
    monkeypatch.delenv(storage.DB_URL_ENV_VAR, raising=False)
    monkeypatch.setenv(storage.DB_ENV_VAR, str(tmp_path / "sub" / "log.sqlite3"))
    assert storage.get_db_path() == tmp_path / "sub" / "log.sqlite3"
    assert storage.get_db_url() == f"sqlite:///{tmp_path / 'sub' / 'log.sqlite3'}"

    monkeypatch.setenv(storage.DB_URL_ENV_VAR, "sqlite://")
    assert storage.get_db_url() == "sqlite://"


def test_cached_engine_follows_config(temp_db):
    engine = storage.get_engine()
    assert storage.get_engine() is engine
    assert str(temp_db) in str(engine.url)
    storage.reset_engine()
    assert storage.get_engine() is not engine


def test_timestamps_round_trip_as_naive_utc(engine):
    """Test created_at/updated_at come back from the engine exactly as written."""
    from sqlmodel import Session

    with Session(engine) as s:
        _store(s, _record(), now=T0)
        _store(s, _record(name="Bob"), now=T1)
        add_contact(s, "K1ABC")

    with Session(engine) as fresh:
        q = fresh.exec(select(QSO)).one()
        assert q.created_at == T0
        assert q.updated_at == T1
        assert q.created_at.tzinfo is None
        contact = fresh.exec(select(Contact)).one()
        assert isinstance(contact.created_at, datetime)
        assert contact.created_at.tzinfo is None
