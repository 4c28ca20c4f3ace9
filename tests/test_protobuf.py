"""Tests for the minimal protobuf encoder used by CRX3 headers."""

import pytest

from rollcloud.crx.protobuf import (
    decode_crx_file_header,
    decode_signed_data,
    encode_crx_file_header,
    encode_signed_data,
    iter_fields,
    read_varint,
    write_length_delimited,
    write_tag,
    write_varint,
)


@pytest.mark.parametrize(
    ("value", "encoded"),
    [
        (0, b"\x00"),
        (1, b"\x01"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
    ],
)
def test_varint_vectors(value: int, encoded: bytes) -> None:
    assert write_varint(value) == encoded
    assert read_varint(encoded) == (value, len(encoded))


def test_write_varint_rejects_negative() -> None:
    with pytest.raises(ValueError):
        write_varint(-1)


def test_tags_for_crx3_fields() -> None:
    assert write_tag(1, 2) == b"\x0a"
    assert write_tag(2, 2) == b"\x12"
    # (10000 << 3) | 2 == 80002
    assert write_tag(10000, 2) == b"\x82\xf1\x04"


def test_write_length_delimited() -> None:
    assert write_length_delimited(1, b"ab") == b"\x0a\x02ab"
    assert write_length_delimited(2, b"") == b"\x12\x00"


def test_signed_data_layout() -> None:
    raw_id = bytes(range(16))
    assert encode_signed_data(raw_id) == b"\x0a\x10" + raw_id
    assert decode_signed_data(encode_signed_data(raw_id)) == raw_id


def test_crx_file_header_fields() -> None:
    signed_data = encode_signed_data(b"\x01" * 16)
    header = encode_crx_file_header(b"KEY", b"SIG", signed_data)

    fields = list(iter_fields(header))
    assert [(number, wire) for number, wire, _ in fields] == [(2, 2), (10000, 2)]
    assert fields[1][2] == signed_data

    decoded = decode_crx_file_header(header)
    assert len(decoded.sha256_with_rsa) == 1
    assert decoded.sha256_with_rsa[0].public_key == b"KEY"
    assert decoded.sha256_with_rsa[0].signature == b"SIG"
    assert decoded.signed_header_data == signed_data
    assert decoded.sha256_with_ecdsa == ()


def test_iter_fields_handles_varint_fields() -> None:
    message = write_tag(5, 0) + write_varint(300) + write_length_delimited(1, b"x")
    assert list(iter_fields(message)) == [(5, 0, 300), (1, 2, b"x")]


@pytest.mark.parametrize(
    "buffer",
    [
        b"\x80",  # truncated varint
        b"\x0a\x05ab",  # length exceeds buffer
        b"\x0b",  # group wire type
        b"\x02\x00",  # field number 0
        b"\xff" * 11,  # overlong varint
    ],
)
def test_iter_fields_rejects_malformed(buffer: bytes) -> None:
    with pytest.raises(ValueError):
        list(iter_fields(buffer))


def test_decode_rejects_wrong_wire_type() -> None:
    with pytest.raises(ValueError, match="length-delimited"):
        decode_crx_file_header(write_tag(2, 0) + write_varint(1))
