"""
Centralized cryptographic operations for CRX packaging.

Both container generations sign with RSASSA-PKCS1-v1_5, which is
deterministic: the same key and input always produce the same signature.
"""

import base64
import binascii
import re

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .exceptions import FormatError, SigningError, SignatureVerificationError
from .models import DEFAULT_RSA_KEY_SIZE

_PEM_ARMOR = re.compile(r"-----(BEGIN|END) ([A-Z0-9 ]+)-----")


def generate_keys(
    key_size: int = DEFAULT_RSA_KEY_SIZE,
) -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generates a new RSA key pair (2048-bit unless told otherwise)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return private_key, private_key.public_key()


def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_to_pem(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def public_key_to_der(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def pem_to_der(pem: str | bytes) -> bytes:
    """
    Strips the textual armor from a PEM block and base64-decodes the body.

    Only the first armored block is considered. Raises FormatError if the
    armor is missing or unbalanced, or if the body is not valid base64.
    """
    if isinstance(pem, bytes):
        try:
            pem = pem.decode("ascii")
        except UnicodeDecodeError as e:
            raise FormatError("PEM input is not ASCII text.") from e

    markers = list(_PEM_ARMOR.finditer(pem))
    if len(markers) < 2 or markers[0].group(1) != "BEGIN":
        raise FormatError("PEM input has no BEGIN/END armor.")
    begin, end = markers[0], markers[1]
    if end.group(1) != "END" or end.group(2) != begin.group(2):
        raise FormatError(
            f"PEM armor mismatch: BEGIN {begin.group(2)} / {end.group(1)} {end.group(2)}."
        )

    body = "".join(pem[begin.end() : end.start()].split())
    if not body:
        raise FormatError(f"PEM block '{begin.group(2)}' is empty.")
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"PEM body is not valid base64: {e}") from e


def load_public_key_der(public_key_der: bytes) -> rsa.RSAPublicKey:
    try:
        public_key = serialization.load_der_public_key(public_key_der)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise FormatError(f"Public key is not a valid DER SubjectPublicKeyInfo: {e}") from e
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise FormatError(
            f"Expected an RSA public key, got {type(public_key).__name__}."
        )
    return public_key


def sign_pkcs1v15(
    data: bytes, private_key: rsa.RSAPrivateKey, algorithm: hashes.HashAlgorithm
) -> bytes:
    """Signs ``data`` with RSASSA-PKCS1-v1_5 over the given hash."""
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError(
            f"Signing requires an RSA private key, got {type(private_key).__name__}."
        )
    try:
        return private_key.sign(data, padding.PKCS1v15(), algorithm)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"{algorithm.name.upper()} signing failed: {e}") from e


def verify_pkcs1v15(
    signature: bytes,
    data: bytes,
    public_key_der: bytes,
    algorithm: hashes.HashAlgorithm,
) -> None:
    """Raises SignatureVerificationError unless ``signature`` is valid for ``data``."""
    try:
        public_key = load_public_key_der(public_key_der)
    except FormatError as e:
        raise SignatureVerificationError(str(e)) from e
    try:
        public_key.verify(signature, data, padding.PKCS1v15(), algorithm)
    except InvalidSignature as e:
        raise SignatureVerificationError(
            f"RSA-{algorithm.name.upper()} signature does not match the embedded public key."
        ) from e
