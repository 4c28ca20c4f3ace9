"""
Minimal protobuf wire-format support for the CRX3 header.

Only what ``CrxFileHeader``, ``AsymmetricKeyProof`` and ``SignedData`` need:
varints, tags and length-delimited fields. Callers go through the
``encode_*``/``decode_*`` functions so the primitives can be replaced by
generated protobuf classes without touching the container builders.
"""

from collections.abc import Iterator

from attrs import define

from .models import (
    CRX3_FIELD_SHA256_WITH_ECDSA,
    CRX3_FIELD_SHA256_WITH_RSA,
    CRX3_FIELD_SIGNED_HEADER_DATA,
    PROOF_FIELD_PUBLIC_KEY,
    PROOF_FIELD_SIGNATURE,
    SIGNED_DATA_FIELD_CRX_ID,
)

WIRE_VARINT = 0
WIRE_I64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_I32 = 5

_MAX_VARINT_BYTES = 10


def write_varint(value: int) -> bytes:
    if value < 0:
        raise ValueError(f"Varints must be non-negative, got {value}.")
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def write_tag(field_number: int, wire_type: int) -> bytes:
    if field_number < 1:
        raise ValueError(f"Invalid field number {field_number}.")
    return write_varint((field_number << 3) | wire_type)


def write_length_delimited(field_number: int, data: bytes) -> bytes:
    return (
        write_tag(field_number, WIRE_LENGTH_DELIMITED)
        + write_varint(len(data))
        + bytes(data)
    )


def read_varint(buffer: bytes, pos: int = 0) -> tuple[int, int]:
    """Decodes a varint at ``pos``; returns ``(value, next_pos)``."""
    result = 0
    for i in range(_MAX_VARINT_BYTES):
        if pos >= len(buffer):
            raise ValueError("Truncated varint.")
        byte = buffer[pos]
        pos += 1
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return result, pos
    raise ValueError("Varint is longer than 10 bytes.")


def iter_fields(buffer: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    """
    Yields ``(field_number, wire_type, value)`` for each field of a message.

    Length-delimited values are returned as bytes, varints as ints. Fixed
    width fields are skipped over and yielded as raw bytes; group wire
    types are rejected.
    """
    pos = 0
    while pos < len(buffer):
        key, pos = read_varint(buffer, pos)
        field_number, wire_type = key >> 3, key & 0x07
        if field_number == 0:
            raise ValueError("Field number 0 is not allowed.")

        if wire_type == WIRE_VARINT:
            value, pos = read_varint(buffer, pos)
            yield field_number, wire_type, value
        elif wire_type == WIRE_LENGTH_DELIMITED:
            length, pos = read_varint(buffer, pos)
            end = pos + length
            if end > len(buffer):
                raise ValueError(
                    f"Field {field_number} declares {length} bytes but only "
                    f"{len(buffer) - pos} remain."
                )
            yield field_number, wire_type, bytes(buffer[pos:end])
            pos = end
        elif wire_type in (WIRE_I64, WIRE_I32):
            width = 8 if wire_type == WIRE_I64 else 4
            if pos + width > len(buffer):
                raise ValueError(f"Truncated fixed-width field {field_number}.")
            yield field_number, wire_type, bytes(buffer[pos : pos + width])
            pos += width
        else:
            raise ValueError(f"Unsupported wire type {wire_type} for field {field_number}.")


# --- CRX3 message shapes ---


@define(frozen=True, slots=True)
class AsymmetricKeyProof:
    public_key: bytes
    signature: bytes


@define(frozen=True, slots=True)
class CrxFileHeader:
    sha256_with_rsa: tuple[AsymmetricKeyProof, ...]
    signed_header_data: bytes
    sha256_with_ecdsa: tuple[AsymmetricKeyProof, ...] = ()


def encode_signed_data(raw_crx_id: bytes) -> bytes:
    return write_length_delimited(SIGNED_DATA_FIELD_CRX_ID, raw_crx_id)


def encode_asymmetric_key_proof(public_key_der: bytes, signature: bytes) -> bytes:
    return write_length_delimited(
        PROOF_FIELD_PUBLIC_KEY, public_key_der
    ) + write_length_delimited(PROOF_FIELD_SIGNATURE, signature)


def encode_crx_file_header(
    public_key_der: bytes, signature: bytes, signed_data: bytes
) -> bytes:
    proof = encode_asymmetric_key_proof(public_key_der, signature)
    return write_length_delimited(
        CRX3_FIELD_SHA256_WITH_RSA, proof
    ) + write_length_delimited(CRX3_FIELD_SIGNED_HEADER_DATA, signed_data)


def decode_signed_data(buffer: bytes) -> bytes:
    raw_id = b""
    for field_number, wire_type, value in iter_fields(buffer):
        if field_number == SIGNED_DATA_FIELD_CRX_ID:
            _expect_bytes(field_number, wire_type)
            raw_id = value  # type: ignore[assignment]
    return raw_id


def decode_asymmetric_key_proof(buffer: bytes) -> AsymmetricKeyProof:
    public_key = signature = b""
    for field_number, wire_type, value in iter_fields(buffer):
        if field_number == PROOF_FIELD_PUBLIC_KEY:
            _expect_bytes(field_number, wire_type)
            public_key = value  # type: ignore[assignment]
        elif field_number == PROOF_FIELD_SIGNATURE:
            _expect_bytes(field_number, wire_type)
            signature = value  # type: ignore[assignment]
    return AsymmetricKeyProof(public_key=public_key, signature=signature)


def decode_crx_file_header(buffer: bytes) -> CrxFileHeader:
    rsa_proofs: list[AsymmetricKeyProof] = []
    ecdsa_proofs: list[AsymmetricKeyProof] = []
    signed_header_data = b""
    for field_number, wire_type, value in iter_fields(buffer):
        if field_number == CRX3_FIELD_SHA256_WITH_RSA:
            _expect_bytes(field_number, wire_type)
            rsa_proofs.append(decode_asymmetric_key_proof(value))  # type: ignore[arg-type]
        elif field_number == CRX3_FIELD_SHA256_WITH_ECDSA:
            _expect_bytes(field_number, wire_type)
            ecdsa_proofs.append(decode_asymmetric_key_proof(value))  # type: ignore[arg-type]
        elif field_number == CRX3_FIELD_SIGNED_HEADER_DATA:
            _expect_bytes(field_number, wire_type)
            signed_header_data = value  # type: ignore[assignment]
    return CrxFileHeader(
        sha256_with_rsa=tuple(rsa_proofs),
        signed_header_data=signed_header_data,
        sha256_with_ecdsa=tuple(ecdsa_proofs),
    )


def _expect_bytes(field_number: int, wire_type: int) -> None:
    if wire_type != WIRE_LENGTH_DELIMITED:
        raise ValueError(
            f"Field {field_number} must be length-delimited, got wire type {wire_type}."
        )
