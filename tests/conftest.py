import pytest


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    from sqlalchemy.pool import StaticPool
    from sqlmodel import SQLModel, create_engine

    from adif_ledger import models  # noqa: F401  (registers tables)

    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def logbook(engine):
    """Logbook over the in-memory engine with a fixed clock."""
    from datetime import datetime

    from adif_ledger.logbook import Logbook

    return Logbook(engine, clock=lambda: datetime(2025, 1, 1, 12, 0, 0))


@pytest.fixture
def session(engine):
    from sqlmodel import Session

    with Session(engine) as s:
        yield s


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the process-wide engine at a temporary database file."""
    from adif_ledger import storage

    db_path = tmp_path / "test.sqlite3"
    monkeypatch.delenv(storage.DB_URL_ENV_VAR, raising=False)
    monkeypatch.setenv(storage.DB_ENV_VAR, str(db_path))
    storage.reset_engine()
    try:
        storage.create_db_and_tables()
        yield db_path
    finally:
        storage.reset_engine()
