import io

import pytest

from adif_ledger.adif import AdifReader, dump_adif, iter_records, make_field, read_records
from adif_ledger.errors import MalformedFormat, TruncatedField

SAMPLE = (
    "Exported by a test\n"
    "<ADIF_VER:5>3.1.6<PROGRAMID:4>TEST<EOH>\n"
    "<CALL:5>K1ABC<QSO_DATE:8>20240704<TIME_ON:4>1234<MODE:3>SSB<EOR>\n"
    "<call:5>k2xyz<qso_date:8:D>20240705<time_on:6>010203<mode:2>CW<eor>\n"
)


def test_reads_records_and_header():
    """Test records come back as lower-case name -> raw bytes."""
    reader = AdifReader(SAMPLE)
    records = list(reader)
    assert len(records) == 2
    assert records[0] == {
        "call": b"K1ABC",
        "qso_date": b"20240704",
        "time_on": b"1234",
        "mode": b"SSB",
    }
    assert records[1]["call"] == b"k2xyz"
    assert records[1]["qso_date"] == b"20240705"
    assert reader.header == {"adif_ver": "3.1.6", "programid": "TEST"}
    assert reader.comment == "Exported by a test"


def test_accepts_bytes_and_file_objects():
    data = SAMPLE.encode("utf-8")
    assert read_records(data) == read_records(io.BytesIO(data))


def test_header_optional_when_stream_starts_with_tag():
    records = read_records("<CALL:5>K1ABC<QSO_DATE:8>20240704<TIME_ON:4>1234<EOR>")
    assert len(records) == 1
    assert records[0]["call"] == b"K1ABC"


def test_empty_input():
    """Test empty ADIF input."""
    assert read_records("") == []
    assert read_records("  \n ") == []


def test_preamble_without_eoh_is_malformed():
    with pytest.raises(MalformedFormat):
        read_records("Some header text <CALL:5>K1ABC<EOR>")
    with pytest.raises(MalformedFormat):
        read_records("no tags at all")
    with pytest.raises(MalformedFormat):
        read_records("Header <ADIF_VER:5>3.1.6")


def test_length_counts_utf8_bytes():
    """Test declared lengths are byte counts, not characters."""
    name = "José"
    data = f"<CALL:5>K1ABC<NAME:{len(name.encode('utf-8'))}>{name}<EOR>"
    records = read_records(data)
    assert records[0]["name"].decode("utf-8") == "José"


def test_malformed_length_skips_only_that_record(caplog):
    """Test that a bad length prefix drops its record and parsing goes on."""
    data = "<CALL:5>K1ABC<NAME:x>Bob<EOR><CALL:5>K2XYZ<EOR>"
    with caplog.at_level("WARNING"):
        records = read_records(data)
    assert [r["call"] for r in records] == [b"K2XYZ"]
    assert "Malformed length" in caplog.text


def test_truncated_field_raises():
    with pytest.raises(TruncatedField):
        read_records("<CALL:50>K1ABC<EOR>")


def test_unterminated_tag_raises():
    with pytest.raises(MalformedFormat):
        read_records("<CALL:5>K1ABC<EOR><CALL:5")


def test_records_are_yielded_lazily():
    """Records before a fatal error are still delivered."""
    it = iter(AdifReader("<CALL:5>K1ABC<EOR><CALL:99>K2"))
    assert next(it)["call"] == b"K1ABC"
    with pytest.raises(TruncatedField):
        next(it)


def test_trailing_fields_without_eor_are_dropped():
    records = read_records("<CALL:5>K1ABC<EOR><CALL:5>K2XYZ")
    assert [r["call"] for r in records] == [b"K1ABC"]


def test_make_field():
    assert make_field("CALL", "K1ABC") == "<CALL:5>K1ABC"
    assert make_field("NAME", "Zoë") == "<NAME:4>Zoë"


def test_dump_adif_format():
    out = dump_adif(
        [{"call": "K1ABC", "name": "José", "comment": "", "app_test_id": "7"}],
        header_fields={"programid": "TEST"},
    )
    assert out.startswith(b"<ADIF_VER:5>3.1.6<PROGRAMID:4>TEST<EOH>\n")
    assert b"<CALL:5>K1ABC" in out
    assert "<NAME:5>José".encode("utf-8") in out
    assert b"COMMENT" not in out
    assert b"APP_" not in out
    assert out.endswith(b"<EOR>\n")


def test_dump_then_read():
    out = dump_adif([{"call": "K1ABC", "mode": "FT8"}, {"call": "K2XYZ", "mode": "CW"}])
    records = read_records(out)
    assert records == [
        {"call": b"K1ABC", "mode": b"FT8"},
        {"call": b"K2XYZ", "mode": b"CW"},
    ]


def test_malformed_header_tag_keeps_first_record(caplog):
    """Test a bad header field loses only itself, with or without a preamble."""
    body = (
        "<ADIF_VER:5>3.1.6<PROGRAMID:x>Foo<EOH>\n"
        "<CALL:5>K1ABC<QSO_DATE:8>20240704<TIME_ON:4>1234<EOR>\n"
        "<CALL:4>W1AW<QSO_DATE:8>20240704<TIME_ON:4>1300<EOR>\n"
    )
    with caplog.at_level("WARNING"):
        reader = AdifReader(body)
        records = list(reader)
    assert [r["call"] for r in records] == [b"K1ABC", b"W1AW"]
    assert reader.header == {"adif_ver": "3.1.6"}
    assert "malformed header tag" in caplog.text

    records = read_records("Log export\n" + body)
    assert [r["call"] for r in records] == [b"K1ABC", b"W1AW"]


def test_iter_records_is_lazy():
    it = iter_records("<CALL:5>K1ABC<EOR><CALL:4>W1AW<EOR>")
    assert next(it) == {"call": b"K1ABC"}
    assert [r["call"] for r in it] == [b"W1AW"]
