"""Builders for the CRX2 and CRX3 container layouts."""

import abc
import struct

from cryptography.hazmat.primitives import hashes

from pyvider.telemetry import logger

from ..crypto import sign_pkcs1v15
from ..exceptions import InputError, SigningError
from ..ids import crx_id
from ..models import (
    CRX3_PREAMBLE_FORMAT,
    CRX3_SIGNED_DATA_PREFIX,
    CRX3_VERSION,
    CRX_MAGIC,
    CrxV2Header,
    KeyPair,
    PackageFormat,
)
from ..protobuf import encode_crx_file_header, encode_signed_data


def _require_archive(archive: bytes) -> bytes:
    if not archive:
        raise InputError("Archive is empty; refusing to package zero bytes.")
    return bytes(archive)


def _require_key_pair(key_pair: KeyPair | None) -> KeyPair:
    if key_pair is None or not key_pair.public_key_der:
        raise SigningError("A signed container needs a key pair with a public key.")
    return key_pair


class ContainerBuilder(abc.ABC):
    package_format: PackageFormat

    @abc.abstractmethod
    def build(self, archive: bytes, key_pair: KeyPair | None) -> bytes:
        """Wraps ``archive`` in a container, signing it with ``key_pair``."""


class CrxV2Builder(ContainerBuilder):
    """``Cr24 | 2 | len(key) | len(sig) | key | RSA-SHA1(archive) | archive``"""

    package_format = PackageFormat.V2

    def build(self, archive: bytes, key_pair: KeyPair | None) -> bytes:
        archive = _require_archive(archive)
        key_pair = _require_key_pair(key_pair)

        signature = sign_pkcs1v15(archive, key_pair.private_key, hashes.SHA1())
        return self._assemble(archive, key_pair.public_key_der, signature)

    @staticmethod
    def _assemble(archive: bytes, public_key_der: bytes, signature: bytes) -> bytes:
        header = CrxV2Header(
            public_key_size=len(public_key_der), signature_size=len(signature)
        ).pack()
        logger.debug(
            "Assembled CRX2 header",
            header=header.hex(),
            public_key_size=len(public_key_der),
            signature_size=len(signature),
            archive_size=len(archive),
        )
        return header + public_key_der + signature + archive


class UnsignedCrxV2Builder(CrxV2Builder):
    """CRX2 with zero-length key and signature. Only for local testing."""

    package_format = PackageFormat.UNSIGNED_V2

    def build(self, archive: bytes, key_pair: KeyPair | None = None) -> bytes:
        archive = _require_archive(archive)
        logger.warning(
            "Building an UNSIGNED CRX2 container. Browsers will not install it "
            "outside developer testing; never ship this package."
        )
        return self._assemble(archive, b"", b"")


class CrxV3Builder(ContainerBuilder):
    """``Cr24 | 3 | len(header) | CrxFileHeader | archive``"""

    package_format = PackageFormat.V3

    @staticmethod
    def signed_payload(signed_data: bytes, archive: bytes) -> bytes:
        """The bytes a CRX3 signature covers."""
        return (
            CRX3_SIGNED_DATA_PREFIX
            + struct.pack("<I", len(signed_data))
            + signed_data
            + archive
        )

    def build(self, archive: bytes, key_pair: KeyPair | None) -> bytes:
        archive = _require_archive(archive)
        key_pair = _require_key_pair(key_pair)

        signed_data = encode_signed_data(crx_id(key_pair.public_key_der))
        signature = sign_pkcs1v15(
            self.signed_payload(signed_data, archive),
            key_pair.private_key,
            hashes.SHA256(),
        )
        header = encode_crx_file_header(key_pair.public_key_der, signature, signed_data)
        logger.debug(
            "Assembled CRX3 header",
            header_size=len(header),
            signature_size=len(signature),
            archive_size=len(archive),
        )
        preamble = struct.pack(CRX3_PREAMBLE_FORMAT, CRX_MAGIC, CRX3_VERSION, len(header))
        return preamble + header + archive


_BUILDERS: dict[PackageFormat, type[ContainerBuilder]] = {
    PackageFormat.V2: CrxV2Builder,
    PackageFormat.V3: CrxV3Builder,
    PackageFormat.UNSIGNED_V2: UnsignedCrxV2Builder,
}


def builder_for(package_format: PackageFormat | str) -> ContainerBuilder:
    return _BUILDERS[PackageFormat.parse(package_format)]()
