"""
Package (extension) identifiers.

A browser addresses an installed package by the first 16 bytes of the
SHA-256 of its DER public key, written one nibble per character over the
alphabet ``a``-``p``. The same 16 bytes are the ``crx_id`` of a CRX3
``SignedData`` message, so both are derived here.
"""

import base64
import hashlib

from .models import CRX_ID_SIZE

PACKAGE_ID_LENGTH = CRX_ID_SIZE * 2
PACKAGE_ID_ALPHABET = "abcdefghijklmnop"


def crx_id(public_key_der: bytes) -> bytes:
    """Returns the first 16 bytes of SHA256(public_key_der)."""
    if not public_key_der:
        raise ValueError("Cannot derive a crx_id from an empty public key.")
    return hashlib.sha256(public_key_der).digest()[:CRX_ID_SIZE]


def encode_crx_id(raw_id: bytes) -> str:
    if len(raw_id) != CRX_ID_SIZE:
        raise ValueError(f"crx_id must be {CRX_ID_SIZE} bytes, got {len(raw_id)}.")
    return "".join(
        PACKAGE_ID_ALPHABET[byte >> 4] + PACKAGE_ID_ALPHABET[byte & 0x0F]
        for byte in raw_id
    )


def derive_package_id(public_key_der: bytes) -> str:
    return encode_crx_id(crx_id(public_key_der))


def is_valid_package_id(value: str) -> bool:
    return len(value) == PACKAGE_ID_LENGTH and all(
        c in PACKAGE_ID_ALPHABET for c in value
    )


def manifest_key(public_key_der: bytes) -> str:
    """base64(public_key_der), for a manifest ``key`` field."""
    return base64.b64encode(public_key_der).decode("ascii")
