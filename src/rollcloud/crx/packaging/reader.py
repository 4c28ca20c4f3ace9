"""Reads and verifies the CRX containers written by this package."""

from pathlib import Path
import struct
from typing import Self

from cryptography.hazmat.primitives import hashes

from ..crypto import verify_pkcs1v15
from ..exceptions import InvalidHeaderError, SignatureVerificationError
from ..ids import crx_id, encode_crx_id
from ..models import (
    CRX2_HEADER_SIZE,
    CRX2_VERSION,
    CRX3_PREAMBLE_FORMAT,
    CRX3_PREAMBLE_SIZE,
    CRX3_VERSION,
    CRX_ID_SIZE,
    CRX_MAGIC,
    CrxV2Header,
)
from ..protobuf import CrxFileHeader, decode_crx_file_header, decode_signed_data
from .containers import CrxV3Builder


class CrxReader:
    """Parses a CRX2 or CRX3 container and checks its signatures."""

    def __init__(self, package_path: Path) -> None:
        package_path = Path(package_path)
        if not package_path.is_file():
            raise FileNotFoundError(f"Package not found at: {package_path}")
        self.package_path: Path | None = package_path
        self._parse(package_path.read_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> Self:
        reader = cls.__new__(cls)
        reader.package_path = None
        reader._parse(bytes(data))
        return reader

    def _parse(self, data: bytes) -> None:
        self.size = len(data)
        if len(data) < 8 or data[:4] != CRX_MAGIC:
            raise InvalidHeaderError(f"Invalid CRX magic. Found {data[:4]!r}.")

        (self.version,) = struct.unpack_from("<I", data, 4)
        self.header: CrxFileHeader | None = None
        self.signed_data = b""
        self.crx_id = b""

        if self.version == CRX2_VERSION:
            self._parse_v2(data)
        elif self.version == CRX3_VERSION:
            self._parse_v3(data)
        else:
            raise InvalidHeaderError(f"Unsupported CRX version {self.version}.")

    def _parse_v2(self, data: bytes) -> None:
        if len(data) < CRX2_HEADER_SIZE:
            raise InvalidHeaderError("Truncated CRX2 header.")
        try:
            header = CrxV2Header.unpack(data[:CRX2_HEADER_SIZE])
        except ValueError as e:
            raise InvalidHeaderError(f"CRX2 header validation failed: {e}") from e

        key_end = CRX2_HEADER_SIZE + header.public_key_size
        sig_end = key_end + header.signature_size
        if sig_end > len(data):
            raise InvalidHeaderError(
                f"CRX2 header declares {sig_end} bytes of key material "
                f"but the file is {len(data)} bytes."
            )
        self.public_key_der = data[CRX2_HEADER_SIZE:key_end]
        self.signature = data[key_end:sig_end]
        self.archive = data[sig_end:]
        if self.public_key_der:
            self.crx_id = crx_id(self.public_key_der)

    def _parse_v3(self, data: bytes) -> None:
        if len(data) < CRX3_PREAMBLE_SIZE:
            raise InvalidHeaderError("Truncated CRX3 preamble.")
        _, _, header_size = struct.unpack_from(CRX3_PREAMBLE_FORMAT, data)
        header_end = CRX3_PREAMBLE_SIZE + header_size
        if header_end > len(data):
            raise InvalidHeaderError(
                f"CRX3 header length {header_size} exceeds the file size."
            )

        try:
            self.header = decode_crx_file_header(data[CRX3_PREAMBLE_SIZE:header_end])
            self.crx_id = decode_signed_data(self.header.signed_header_data)
        except ValueError as e:
            raise InvalidHeaderError(f"CRX3 header validation failed: {e}") from e

        if len(self.crx_id) != CRX_ID_SIZE:
            raise InvalidHeaderError(
                f"CRX3 signed header data carries a {len(self.crx_id)}-byte crx_id."
            )
        if not self.header.sha256_with_rsa:
            raise InvalidHeaderError("CRX3 header has no sha256_with_rsa proof.")

        self.signed_data = self.header.signed_header_data
        self.archive = data[header_end:]
        # The proof whose key hashes to crx_id identifies the package.
        primary = next(
            (p for p in self.header.sha256_with_rsa if self._proves_crx_id(p.public_key)),
            self.header.sha256_with_rsa[0],
        )
        self.public_key_der = primary.public_key
        self.signature = primary.signature

    def _proves_crx_id(self, public_key_der: bytes) -> bool:
        return bool(public_key_der) and crx_id(public_key_der) == self.crx_id

    @property
    def is_signed(self) -> bool:
        return bool(self.public_key_der and self.signature)

    @property
    def package_id(self) -> str | None:
        return encode_crx_id(self.crx_id) if self.crx_id else None

    def verify(self, allow_unsigned: bool = False) -> None:
        """Raises SignatureVerificationError unless every signature checks out."""
        if self.version == CRX2_VERSION:
            if not self.public_key_der and not self.signature:
                if allow_unsigned:
                    return
                raise SignatureVerificationError("CRX2 package is unsigned.")
            verify_pkcs1v15(
                self.signature, self.archive, self.public_key_der, hashes.SHA1()
            )
            return

        if self.header is None:
            raise InvalidHeaderError("CRX3 package has no parsed header.")
        payload = CrxV3Builder.signed_payload(self.signed_data, self.archive)
        for proof in self.header.sha256_with_rsa:
            verify_pkcs1v15(proof.signature, payload, proof.public_key, hashes.SHA256())
        if not any(self._proves_crx_id(p.public_key) for p in self.header.sha256_with_rsa):
            raise SignatureVerificationError(
                "No sha256_with_rsa proof matches the declared crx_id."
            )

    def get_info(self) -> str:
        """Returns a human-readable string of the package information."""
        return (
            f"CRX Package Information:\n"
            f"  CRX Version: {self.version}\n"
            f"  Package ID: {self.package_id or '(unsigned)'}\n"
            f"  Public Key Size: {len(self.public_key_der)} bytes\n"
            f"  Signature Size: {len(self.signature)} bytes\n"
            f"  Archive Size: {len(self.archive)} bytes\n"
            f"  Total Size: {self.size} bytes"
        )
