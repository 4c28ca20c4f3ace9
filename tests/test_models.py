"""
Checks that the CRX header models match the on-disk layouts browsers expect.
"""

import struct

import pytest

from rollcloud.crx.models import (
    CRX2_HEADER_FORMAT,
    CRX2_HEADER_SIZE,
    CRX3_PREAMBLE_SIZE,
    CrxV2Header,
    KeyPair,
    PackageFormat,
)


def test_header_sizes() -> None:
    assert CRX2_HEADER_SIZE == 16
    assert CRX3_PREAMBLE_SIZE == 12
    assert struct.calcsize(CRX2_HEADER_FORMAT) == CRX2_HEADER_SIZE


def test_crx2_header_pack_unpack() -> None:
    header = CrxV2Header(public_key_size=294, signature_size=256)
    packed = header.pack()
    assert packed == b"Cr24\x02\x00\x00\x00\x26\x01\x00\x00\x00\x01\x00\x00"
    assert CrxV2Header.unpack(packed) == header


@pytest.mark.parametrize(
    ("buffer", "message"),
    [
        (b"Cr24", "Buffer size"),
        (b"Cr25" + struct.pack("<III", 2, 0, 0), "Invalid CRX magic"),
        (b"Cr24" + struct.pack("<III", 3, 0, 0), "Unexpected CRX version"),
    ],
)
def test_crx2_header_unpack_rejects(buffer: bytes, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        CrxV2Header.unpack(buffer)


def test_package_format_parse() -> None:
    assert PackageFormat.parse("V2") is PackageFormat.V2
    assert PackageFormat.parse(" unsigned_v2 ") is PackageFormat.UNSIGNED_V2
    assert PackageFormat.parse(PackageFormat.V3) is PackageFormat.V3
    assert not PackageFormat.UNSIGNED_V2.signed
    assert PackageFormat.V3.signed


def test_key_pair_repr_hides_key_bytes(key_pair: KeyPair) -> None:
    assert "bytes>" in repr(key_pair)
    assert key_pair.key_size == 2048
