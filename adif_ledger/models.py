"""Data models used by ADIF Ledger.

Two SQLModel tables: QSO, one logbook entry keyed naturally by
(call, qso_date, time_on), and Contact, the CRM side that QSOs are linked to
by callsign. Controlled ADIF vocabularies are Python enums stored as their
single-token ADIF values.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel


class QslRcvd(str, Enum):
    YES = "Y"
    NO = "N"
    REQUESTED = "R"
    IGNORE = "I"
    VERIFIED = "V"


class QslSent(str, Enum):
    YES = "Y"
    NO = "N"
    REQUESTED = "R"
    QUEUED = "Q"
    IGNORE = "I"


class QslVia(str, Enum):
    BUREAU = "B"
    DIRECT = "D"
    ELECTRONIC = "E"
    MANAGER = "M"


class UploadStatus(str, Enum):
    UPLOADED = "Y"
    DO_NOT_UPLOAD = "N"
    MODIFIED = "M"


class QsoComplete(str, Enum):
    YES = "Y"
    NO = "N"
    NIL = "NIL"
    UNCERTAIN = "?"


class AntPath(str, Enum):
    GRAYLINE = "G"
    OTHER = "O"
    SHORT_PATH = "S"
    LONG_PATH = "L"


def _vocab(enum_cls: type[Enum]) -> Any:
    """Optional enum column persisted as the ADIF token rather than the member name."""
    return Field(
        default=None,
        sa_column=Column(
            SAEnum(
                enum_cls,
                values_callable=lambda members: [m.value for m in members],
                native_enum=False,
                length=3,
            ),
            nullable=True,
        ),
    )


def _json_map() -> Any:
    return Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return str(uuid.uuid4())


def now_utc() -> datetime:
    """Return the current time as a naive UTC datetime without microseconds.

    We intentionally store naive UTC to keep SQLite handling and output simple.
    """
    return datetime.now(UTC).replace(tzinfo=None, microsecond=0)


def _utc_stamp() -> Any:
    """Naive UTC timestamp column, independent of SQLModel's datetime default type."""
    return Field(default_factory=now_utc, sa_column=Column(DateTime(timezone=False), nullable=False))


class Contact(SQLModel, table=True):
    """CRM contact; only the callsign matters to the logbook."""

    __tablename__ = "contacts"

    id: str = Field(default_factory=new_id, primary_key=True)
    callsign: Optional[str] = Field(default=None, index=True)
    name: Optional[str] = None
    created_at: datetime = _utc_stamp()


class QSO(SQLModel, table=True):
    """A single QSO (contact) entry.

    Columns follow ADIF field names. The on-air instant is split into
    `qso_date` and `time_on`; together with `call` (uppercased) they form the
    natural key. All timestamps are naive UTC.
    """

    __tablename__ = "qsos"
    __table_args__ = (
        UniqueConstraint("call", "qso_date", "time_on", name="uq_qsos_natural_key"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    contact_id: Optional[str] = Field(default=None, foreign_key="contacts.id", index=True)

    # Natural key
    call: str = Field(index=True, description="Worked station callsign, uppercased")
    qso_date: date = Field(index=True)
    time_on: time

    qso_date_off: Optional[date] = None
    time_off: Optional[time] = None

    # Radio details
    band: Optional[str] = Field(default=None, index=True)
    band_rx: Optional[str] = None
    freq: Optional[float] = Field(default=None, description="Frequency in MHz")
    freq_rx: Optional[float] = None
    mode: str = Field(index=True)
    submode: Optional[str] = None
    rst_sent: Optional[str] = None
    rst_rcvd: Optional[str] = None
    tx_pwr: Optional[float] = None

    # Contacted station
    name: Optional[str] = None
    qth: Optional[str] = None
    gridsquare: Optional[str] = None
    lat: Optional[str] = None
    lon: Optional[str] = None
    country: Optional[str] = None
    dxcc: Optional[int] = None
    cqz: Optional[int] = None
    ituz: Optional[int] = None
    cont: Optional[str] = None
    state: Optional[str] = None
    cnty: Optional[str] = None
    pfx: Optional[str] = None
    iota: Optional[str] = None
    sota_ref: Optional[str] = None
    pota_ref: Optional[str] = None

    # Propagation
    prop_mode: Optional[str] = None
    ant_path: Optional[AntPath] = _vocab(AntPath)
    distance: Optional[float] = None
    a_index: Optional[int] = None
    k_index: Optional[int] = None
    sfi: Optional[int] = None

    # Contest
    contest_id: Optional[str] = None
    srx: Optional[int] = None
    stx: Optional[int] = None
    qso_complete: Optional[QsoComplete] = _vocab(QsoComplete)

    # My station
    station_callsign: Optional[str] = None
    operator: Optional[str] = None
    my_name: Optional[str] = None
    my_city: Optional[str] = None
    my_country: Optional[str] = None
    my_state: Optional[str] = None
    my_cq_zone: Optional[int] = None
    my_itu_zone: Optional[int] = None
    my_dxcc: Optional[int] = None
    my_gridsquare: Optional[str] = None
    my_lat: Optional[str] = None
    my_lon: Optional[str] = None
    my_rig: Optional[str] = None
    my_antenna: Optional[str] = None

    # Paper QSL
    qsl_sent: Optional[QslSent] = _vocab(QslSent)
    qsl_rcvd: Optional[QslRcvd] = _vocab(QslRcvd)
    qslsdate: Optional[date] = None
    qslrdate: Optional[date] = None
    qsl_sent_via: Optional[QslVia] = _vocab(QslVia)
    qsl_rcvd_via: Optional[QslVia] = _vocab(QslVia)
    qsl_via: Optional[str] = None
    qslmsg: Optional[str] = None
    qslmsg_rcvd: Optional[str] = None

    # LoTW
    lotw_qsl_sent: Optional[QslSent] = _vocab(QslSent)
    lotw_qsl_rcvd: Optional[QslRcvd] = _vocab(QslRcvd)
    lotw_qslsdate: Optional[date] = None
    lotw_qslrdate: Optional[date] = None

    # eQSL
    eqsl_qsl_sent: Optional[QslSent] = _vocab(QslSent)
    eqsl_qsl_rcvd: Optional[QslRcvd] = _vocab(QslRcvd)
    eqsl_qslsdate: Optional[date] = None
    eqsl_qslrdate: Optional[date] = None
    eqsl_ag: Optional[bool] = None

    # Third-party log uploads
    clublog_qso_upload_date: Optional[date] = None
    clublog_qso_upload_status: Optional[UploadStatus] = _vocab(UploadStatus)
    hrdlog_qso_upload_date: Optional[date] = None
    hrdlog_qso_upload_status: Optional[UploadStatus] = _vocab(UploadStatus)
    qrzcom_qso_upload_date: Optional[date] = None
    qrzcom_qso_upload_status: Optional[UploadStatus] = _vocab(UploadStatus)
    hamlogeu_qso_upload_date: Optional[date] = None
    hamlogeu_qso_upload_status: Optional[UploadStatus] = _vocab(UploadStatus)
    hamqth_qso_upload_date: Optional[date] = None
    hamqth_qso_upload_status: Optional[UploadStatus] = _vocab(UploadStatus)

    # Misc
    comment: Optional[str] = None
    notes: Optional[str] = None

    # Vendor (APP_*) and user-defined extension fields
    app_fields: Dict[str, Any] = _json_map()
    user_fields: Dict[str, Any] = _json_map()

    created_at: datetime = _utc_stamp()
    updated_at: datetime = _utc_stamp()

    @property
    def start_at(self) -> datetime:
        """On-air instant as a naive UTC datetime."""
        return datetime.combine(self.qso_date, self.time_on)
