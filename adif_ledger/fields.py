"""Known ADIF fields and how each one is stored.

The table drives normalization on import, the coalescing merge and
serialization on export. Column names equal the lower-case ADIF field names.
Order matters: it is the order fields are written on export.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .models import AntPath, QslRcvd, QslSent, QslVia, QsoComplete, UploadStatus

STR = "str"
INT = "int"
FLOAT = "float"
DATE = "date"
TIME = "time"
BOOL = "bool"
VOCAB = "vocab"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str
    vocab: Optional[type[Enum]] = None


def _f(name: str, kind: str = STR, vocab: Optional[type[Enum]] = None) -> Tuple[str, FieldSpec]:
    return name, FieldSpec(name, kind, vocab)


FIELDS: Dict[str, FieldSpec] = dict(
    [
        _f("call"),
        _f("qso_date", DATE),
        _f("time_on", TIME),
        _f("mode"),
        _f("qso_date_off", DATE),
        _f("time_off", TIME),
        _f("band"),
        _f("freq", FLOAT),
        _f("band_rx"),
        _f("freq_rx", FLOAT),
        _f("submode"),
        _f("rst_sent"),
        _f("rst_rcvd"),
        _f("tx_pwr", FLOAT),
        _f("name"),
        _f("qth"),
        _f("gridsquare"),
        _f("lat"),
        _f("lon"),
        _f("country"),
        _f("dxcc", INT),
        _f("cqz", INT),
        _f("ituz", INT),
        _f("cont"),
        _f("state"),
        _f("cnty"),
        _f("pfx"),
        _f("iota"),
        _f("sota_ref"),
        _f("pota_ref"),
        _f("prop_mode"),
        _f("ant_path", VOCAB, AntPath),
        _f("distance", FLOAT),
        _f("a_index", INT),
        _f("k_index", INT),
        _f("sfi", INT),
        _f("contest_id"),
        _f("srx", INT),
        _f("stx", INT),
        _f("qso_complete", VOCAB, QsoComplete),
        _f("station_callsign"),
        _f("operator"),
        _f("my_name"),
        _f("my_city"),
        _f("my_country"),
        _f("my_state"),
        _f("my_cq_zone", INT),
        _f("my_itu_zone", INT),
        _f("my_dxcc", INT),
        _f("my_gridsquare"),
        _f("my_lat"),
        _f("my_lon"),
        _f("my_rig"),
        _f("my_antenna"),
        _f("qsl_sent", VOCAB, QslSent),
        _f("qsl_rcvd", VOCAB, QslRcvd),
        _f("qslsdate", DATE),
        _f("qslrdate", DATE),
        _f("qsl_sent_via", VOCAB, QslVia),
        _f("qsl_rcvd_via", VOCAB, QslVia),
        _f("qsl_via"),
        _f("qslmsg"),
        _f("qslmsg_rcvd"),
        _f("lotw_qsl_sent", VOCAB, QslSent),
        _f("lotw_qsl_rcvd", VOCAB, QslRcvd),
        _f("lotw_qslsdate", DATE),
        _f("lotw_qslrdate", DATE),
        _f("eqsl_qsl_sent", VOCAB, QslSent),
        _f("eqsl_qsl_rcvd", VOCAB, QslRcvd),
        _f("eqsl_qslsdate", DATE),
        _f("eqsl_qslrdate", DATE),
        _f("eqsl_ag", BOOL),
        _f("clublog_qso_upload_date", DATE),
        _f("clublog_qso_upload_status", VOCAB, UploadStatus),
        _f("hrdlog_qso_upload_date", DATE),
        _f("hrdlog_qso_upload_status", VOCAB, UploadStatus),
        _f("qrzcom_qso_upload_date", DATE),
        _f("qrzcom_qso_upload_status", VOCAB, UploadStatus),
        _f("hamlogeu_qso_upload_date", DATE),
        _f("hamlogeu_qso_upload_status", VOCAB, UploadStatus),
        _f("hamqth_qso_upload_date", DATE),
        _f("hamqth_qso_upload_status", VOCAB, UploadStatus),
        _f("comment"),
        _f("notes"),
    ]
)

NATURAL_KEY = ("call", "qso_date", "time_on")

# Columns the coalescing merge may touch
MERGE_COLUMNS = tuple(name for name in FIELDS if name not in NATURAL_KEY)


def format_value(spec: FieldSpec, value: Any) -> Optional[str]:
    """Render a stored value as ADIF text, or None when absent."""
    if value is None:
        return None
    if spec.kind == DATE:
        return value.strftime("%Y%m%d") if isinstance(value, date) else str(value)
    if spec.kind == TIME:
        return value.strftime("%H%M%S") if isinstance(value, time) else str(value)
    if spec.kind == BOOL:
        return "Y" if value else "N"
    if spec.kind == VOCAB:
        return value.value if isinstance(value, Enum) else str(value)
    if spec.kind == FLOAT:
        # repr gives the shortest text that parses back to the same float
        return repr(float(value))
    return str(value)
