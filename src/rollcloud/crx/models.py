import base64
import enum
from pathlib import Path
import struct
from typing import Self

from attrs import define, field
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# CRX container constants
CRX_MAGIC: bytes = b"Cr24"
CRX2_VERSION: int = 2
CRX3_VERSION: int = 3
CRX3_SIGNED_DATA_PREFIX: bytes = b"CRX3 SignedData\x00"
CRX_ID_SIZE: int = 16

MIN_RSA_KEY_SIZE: int = 2048
DEFAULT_RSA_KEY_SIZE: int = 2048

# CrxFileHeader / AsymmetricKeyProof / SignedData field numbers
CRX3_FIELD_SHA256_WITH_RSA: int = 2
CRX3_FIELD_SHA256_WITH_ECDSA: int = 3
CRX3_FIELD_SIGNED_HEADER_DATA: int = 10000
PROOF_FIELD_PUBLIC_KEY: int = 1
PROOF_FIELD_SIGNATURE: int = 2
SIGNED_DATA_FIELD_CRX_ID: int = 1

# magic, version, public key length, signature length
CRX2_HEADER_FORMAT = "<4sIII"
CRX2_HEADER_SIZE = struct.calcsize(CRX2_HEADER_FORMAT)
# magic, version, header length
CRX3_PREAMBLE_FORMAT = "<4sII"
CRX3_PREAMBLE_SIZE = struct.calcsize(CRX3_PREAMBLE_FORMAT)

if CRX2_HEADER_SIZE != 16:
    raise AssertionError(
        f"Calculated CRX2 header size is {CRX2_HEADER_SIZE}, expected 16."
    )


class PackageFormat(enum.Enum):
    V2 = "v2"
    V3 = "v3"
    UNSIGNED_V2 = "unsigned-v2"

    @classmethod
    def parse(cls, value: "str | PackageFormat") -> "PackageFormat":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        for member in cls:
            if member.value == normalized:
                return member
        choices = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown package format {value!r}; expected one of: {choices}")

    @property
    def signed(self) -> bool:
        return self is not PackageFormat.UNSIGNED_V2


@define(frozen=True, slots=True)
class KeyPair:
    """An RSA private key together with the DER (SPKI) encoding of its public half."""

    private_key: rsa.RSAPrivateKey
    public_key_der: bytes = field(repr=lambda der: f"<{len(der)} bytes>")

    @classmethod
    def from_private_key(cls, private_key: rsa.RSAPrivateKey) -> Self:
        der = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return cls(private_key=private_key, public_key_der=der)

    @property
    def key_size(self) -> int:
        return self.private_key.key_size

    @property
    def manifest_key(self) -> str:
        """The value a manifest's ``key`` field needs: base64 of the DER public key."""
        return base64.b64encode(self.public_key_der).decode("ascii")


@define(frozen=True, slots=True)
class CrxV2Header:
    public_key_size: int
    signature_size: int
    magic: bytes = field(default=CRX_MAGIC)
    version: int = field(default=CRX2_VERSION)

    def pack(self) -> bytes:
        return struct.pack(
            CRX2_HEADER_FORMAT,
            self.magic,
            self.version,
            self.public_key_size,
            self.signature_size,
        )

    @classmethod
    def unpack(cls, buffer: bytes) -> Self:
        if len(buffer) != CRX2_HEADER_SIZE:
            raise ValueError(f"Buffer size {len(buffer)} != {CRX2_HEADER_SIZE}")

        magic, version, public_key_size, signature_size = struct.unpack(
            CRX2_HEADER_FORMAT, buffer
        )
        if magic != CRX_MAGIC:
            raise ValueError(f"Invalid CRX magic {magic!r}.")
        if version != CRX2_VERSION:
            raise ValueError(f"Unexpected CRX version {version}.")

        return cls(
            public_key_size=public_key_size,
            signature_size=signature_size,
            magic=magic,
            version=version,
        )


@define(frozen=True, slots=True)
class BuildResult:
    output_path: Path
    package_id: str
    id_path: Path
    package_format: PackageFormat
