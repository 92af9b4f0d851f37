from __future__ import annotations

import pytest

from serialdbg.core.errors import InvalidHexFormatError
from serialdbg.model.codec import (
    DataMode,
    byte_length,
    decode_inbound,
    encode_outbound,
    has_unpaired_nibble,
    normalize_hex,
)


def test_text_encode_utf8():
    assert encode_outbound("AT", DataMode.TEXT) == b"AT"
    assert encode_outbound("é", "text") == b"\xc3\xa9"


def test_text_encode_appends_terminator():
    assert encode_outbound("AT", DataMode.TEXT, terminator="\r\n") == bytes.fromhex("41540D0A")


def test_hex_encode_ignores_whitespace_and_case():
    assert encode_outbound("41 54\t0d\n0A", DataMode.HEX) == b"AT\r\n"


def test_hex_encode_does_not_append_terminator():
    assert encode_outbound("41", DataMode.HEX, terminator="\r\n") == b"A"


def test_hex_encode_empty_is_empty():
    assert encode_outbound("   ", DataMode.HEX) == b""


@pytest.mark.parametrize("bad", ["4", "415", "GG", "41 5Z", "0x41"])
def test_hex_encode_invalid_raises(bad):
    with pytest.raises(InvalidHexFormatError):
        encode_outbound(bad, DataMode.HEX)


def test_decode_hex_uppercase_pairs():
    assert decode_inbound(b"\x00\x0a\xff", DataMode.HEX) == "00 0A FF"
    assert decode_inbound(b"", DataMode.HEX) == ""


def test_decode_text_is_lossy_not_raising():
    out = decode_inbound(b"ok\xff\xfe", DataMode.TEXT)
    assert out.startswith("ok")
    assert "�" in out


@pytest.mark.parametrize("s", ["de ad be ef", "0102030405", "aA bB", ""])
def test_hex_roundtrip_matches_normalized_input(s):
    assert decode_inbound(encode_outbound(s, DataMode.HEX), DataMode.HEX) == normalize_hex(s)


def test_byte_length_hex_rounds_down():
    assert byte_length("41 54 0", DataMode.HEX) == 2
    assert has_unpaired_nibble("41 54 0") is True
    assert has_unpaired_nibble("4154") is False


def test_byte_length_text_counts_chars():
    assert byte_length("hello", DataMode.TEXT) == 5


def test_data_mode_parse():
    assert DataMode.parse("HEX") is DataMode.HEX
    assert DataMode.parse(DataMode.TEXT) is DataMode.TEXT
    with pytest.raises(ValueError):
        DataMode.parse("binary")
