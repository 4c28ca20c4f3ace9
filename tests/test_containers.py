"""Tests for the CRX2 and CRX3 container builders."""

import struct

from cryptography.hazmat.primitives import hashes
import pytest

from rollcloud.crx.crypto import verify_pkcs1v15
from rollcloud.crx.exceptions import InputError, SigningError
from rollcloud.crx.ids import crx_id, derive_package_id
from rollcloud.crx.models import KeyPair, PackageFormat
from rollcloud.crx.packaging.containers import (
    CrxV2Builder,
    CrxV3Builder,
    UnsignedCrxV2Builder,
    builder_for,
)
from rollcloud.crx.protobuf import (
    decode_asymmetric_key_proof,
    decode_signed_data,
    iter_fields,
)

ARCHIVE = b"PK\x03\x04" + b"extension payload" * 32


def test_v2_layout_and_size(key_pair: KeyPair) -> None:
    container = CrxV2Builder().build(ARCHIVE, key_pair)

    magic, version, key_len, sig_len = struct.unpack_from("<4sIII", container)
    assert magic == b"Cr24"
    assert version == 2
    assert key_len == len(key_pair.public_key_der)
    assert sig_len == 256
    assert len(container) == 16 + key_len + sig_len + len(ARCHIVE)

    key = container[16 : 16 + key_len]
    signature = container[16 + key_len : 16 + key_len + sig_len]
    assert key == key_pair.public_key_der
    assert container.endswith(ARCHIVE)
    verify_pkcs1v15(signature, ARCHIVE, key, hashes.SHA1())


def test_unsigned_v2_has_zero_lengths(key_pair: KeyPair) -> None:
    container = UnsignedCrxV2Builder().build(ARCHIVE)

    assert container[:16] == b"Cr24" + struct.pack("<III", 2, 0, 0)
    assert container[16:] == ARCHIVE
    assert UnsignedCrxV2Builder().build(ARCHIVE, key_pair) == container


def test_v3_header_structure(key_pair: KeyPair) -> None:
    container = CrxV3Builder().build(ARCHIVE, key_pair)

    assert container[:4] == b"Cr24"
    assert struct.unpack_from("<I", container, 4)[0] == 3
    header_len = struct.unpack_from("<I", container, 8)[0]
    header = container[12 : 12 + header_len]
    assert container[12 + header_len :] == ARCHIVE

    fields = list(iter_fields(header))
    assert [(number, wire) for number, wire, _ in fields] == [(2, 2), (10000, 2)]


def test_v3_signature_round_trip(key_pair: KeyPair) -> None:
    container = CrxV3Builder().build(ARCHIVE, key_pair)
    header_len = struct.unpack_from("<I", container, 8)[0]
    fields = {number: value for number, _, value in iter_fields(container[12 : 12 + header_len])}

    proof = decode_asymmetric_key_proof(fields[2])
    signed_data = fields[10000]
    assert proof.public_key == key_pair.public_key_der
    assert decode_signed_data(signed_data) == crx_id(key_pair.public_key_der)

    to_sign = (
        b"CRX3 SignedData\x00" + struct.pack("<I", len(signed_data)) + signed_data + ARCHIVE
    )
    verify_pkcs1v15(proof.signature, to_sign, proof.public_key, hashes.SHA256())


@pytest.mark.parametrize("builder_cls", [CrxV2Builder, CrxV3Builder])
def test_builds_are_deterministic(builder_cls: type, key_pair: KeyPair) -> None:
    assert builder_cls().build(ARCHIVE, key_pair) == builder_cls().build(ARCHIVE, key_pair)


def test_id_is_payload_independent(key_pair: KeyPair) -> None:
    builder = CrxV3Builder()
    first = builder.build(ARCHIVE, key_pair)
    second = builder.build(ARCHIVE + b"more", key_pair)

    assert first != second
    # The crx_id embedded in both headers is the same key-derived value.
    assert crx_id(key_pair.public_key_der).hex() in first.hex()
    assert crx_id(key_pair.public_key_der).hex() in second.hex()
    assert len(derive_package_id(key_pair.public_key_der)) == 32


@pytest.mark.parametrize(
    "builder_cls", [CrxV2Builder, CrxV3Builder, UnsignedCrxV2Builder]
)
def test_empty_archive_rejected(builder_cls: type, key_pair: KeyPair) -> None:
    with pytest.raises(InputError, match="empty"):
        builder_cls().build(b"", key_pair)


@pytest.mark.parametrize("builder_cls", [CrxV2Builder, CrxV3Builder])
def test_signed_builders_need_a_key(builder_cls: type) -> None:
    with pytest.raises(SigningError):
        builder_cls().build(ARCHIVE, None)


@pytest.mark.parametrize("builder_cls", [CrxV2Builder, CrxV3Builder])
def test_malformed_private_key_is_a_signing_error(
    builder_cls: type, key_pair: KeyPair
) -> None:
    broken = KeyPair(private_key="not a key", public_key_der=key_pair.public_key_der)  # type: ignore[arg-type]
    with pytest.raises(SigningError):
        builder_cls().build(ARCHIVE, broken)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("v2", CrxV2Builder),
        ("V3", CrxV3Builder),
        ("unsigned_v2", UnsignedCrxV2Builder),
        (PackageFormat.UNSIGNED_V2, UnsignedCrxV2Builder),
    ],
)
def test_builder_for(value: str | PackageFormat, expected: type) -> None:
    assert type(builder_for(value)) is expected


def test_builder_for_rejects_unknown_format() -> None:
    with pytest.raises(ValueError, match="Unknown package format"):
        builder_for("v4")
