"""Persistent RSA key material for signing CRX packages."""

import os
from pathlib import Path
import tempfile

from attrs import define, field
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from pyvider.telemetry import logger

from .crypto import (
    generate_keys,
    pem_to_der,
    private_key_to_pem,
    public_key_to_pem,
)
from .exceptions import FormatError, KeyMaterialError
from .ids import derive_package_id
from .models import DEFAULT_RSA_KEY_SIZE, MIN_RSA_KEY_SIZE, KeyPair

PRIVATE_KEY_FILENAME = "private.pem"
PUBLIC_KEY_FILENAME = "public.pem"
PUBLIC_KEY_DER_FILENAME = "public.der"


def _write_atomic(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Writes ``data`` to a temp file next to ``path`` and renames it into place."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


@define(frozen=True)
class KeyStore:
    """
    A directory holding one RSA key pair.

    ``private.pem`` is authoritative; ``public.pem`` and ``public.der`` are
    derived from it. Existing keys are never regenerated: doing so would
    change the package id of every package already issued with them.
    """

    directory: Path = field(converter=Path)
    key_size: int = field(default=DEFAULT_RSA_KEY_SIZE)

    @property
    def private_key_path(self) -> Path:
        return self.directory / PRIVATE_KEY_FILENAME

    @property
    def public_key_path(self) -> Path:
        return self.directory / PUBLIC_KEY_FILENAME

    @property
    def public_key_der_path(self) -> Path:
        return self.directory / PUBLIC_KEY_DER_FILENAME

    def exists(self) -> bool:
        return self.private_key_path.is_file()

    def load(self) -> KeyPair:
        """Loads the stored key pair, raising KeyMaterialError if it is absent or unusable."""
        if not self.exists():
            raise KeyMaterialError(f"No private key found at {self.private_key_path}.")

        try:
            pem = self.private_key_path.read_bytes()
        except OSError as e:
            raise KeyMaterialError(
                f"Could not read private key {self.private_key_path}: {e}"
            ) from e

        try:
            private_key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyMaterialError(
                f"Private key at {self.private_key_path} is malformed: {e}"
            ) from e

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise KeyMaterialError(
                f"Private key at {self.private_key_path} is "
                f"{type(private_key).__name__}, expected RSA."
            )
        if private_key.key_size < MIN_RSA_KEY_SIZE:
            raise KeyMaterialError(
                f"Private key at {self.private_key_path} is {private_key.key_size} bits; "
                f"at least {MIN_RSA_KEY_SIZE} are required."
            )

        key_pair = KeyPair.from_private_key(private_key)
        self._check_public_key(key_pair)
        self._restore_public_files(key_pair)
        return key_pair

    def load_or_generate(self) -> KeyPair:
        if self.exists():
            key_pair = self.load()
            logger.info(
                "Using existing RSA key pair",
                key_dir=str(self.directory),
                key_size=key_pair.key_size,
            )
            return key_pair
        return self.generate()

    def generate(self) -> KeyPair:
        """
        Generates and persists a new key pair.

        The private key is published with a hard link so that of two
        processes racing on an empty directory exactly one key wins; the
        loser loads the winner's key instead of overwriting it.
        """
        if self.key_size < MIN_RSA_KEY_SIZE:
            raise KeyMaterialError(
                f"Refusing to generate a {self.key_size}-bit key; "
                f"at least {MIN_RSA_KEY_SIZE} bits are required."
            )
        if self.exists():
            raise KeyMaterialError(
                f"A private key already exists at {self.private_key_path}; "
                "delete it first to generate a new one."
            )
        orphans = [p for p in (self.public_key_path, self.public_key_der_path) if p.exists()]
        if orphans:
            raise KeyMaterialError(
                f"Found public key material without a private key: "
                f"{', '.join(str(p) for p in orphans)}. Restore {self.private_key_path} "
                "or delete the public key files to generate a new key pair."
            )

        logger.info("Generating new RSA key pair", key_size=self.key_size)
        private_key, _ = generate_keys(self.key_size)
        pem = private_key_to_pem(private_key)

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{PRIVATE_KEY_FILENAME}.", suffix=".tmp", dir=self.directory
            )
        except OSError as e:
            raise KeyMaterialError(
                f"Key directory {self.directory} is not writable: {e}"
            ) from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(pem)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.link(tmp_path, self.private_key_path)
        except FileExistsError:
            logger.info(
                "Another process created the key pair first; using it",
                key_dir=str(self.directory),
            )
            return self.load()
        except OSError as e:
            raise KeyMaterialError(
                f"Could not write private key to {self.private_key_path}: {e}"
            ) from e
        finally:
            tmp_path.unlink(missing_ok=True)

        key_pair = KeyPair.from_private_key(private_key)
        self._write_public_files(key_pair, only_missing=False)
        logger.info(
            "Generated RSA key pair",
            private_key=str(self.private_key_path),
            public_key=str(self.public_key_path),
            package_id=derive_package_id(key_pair.public_key_der),
        )
        return key_pair

    def _check_public_key(self, key_pair: KeyPair) -> None:
        if not self.public_key_path.is_file():
            return
        try:
            stored_der = pem_to_der(self.public_key_path.read_bytes())
        except (OSError, FormatError) as e:
            raise KeyMaterialError(
                f"Public key at {self.public_key_path} is unreadable: {e}"
            ) from e
        if stored_der != key_pair.public_key_der:
            raise KeyMaterialError(
                f"Public key at {self.public_key_path} does not belong to "
                f"the private key at {self.private_key_path}."
            )

    def _restore_public_files(self, key_pair: KeyPair) -> None:
        """Re-derives missing public key files; a read-only key directory is left as is."""
        try:
            self._write_public_files(key_pair, only_missing=True)
        except KeyMaterialError as e:
            logger.warning(
                "Could not restore public key files; continuing with the private key",
                key_dir=str(self.directory),
                error=str(e),
            )

    def _write_public_files(self, key_pair: KeyPair, *, only_missing: bool) -> None:
        files = {
            self.public_key_path: public_key_to_pem(key_pair.private_key.public_key()),
            self.public_key_der_path: key_pair.public_key_der,
        }
        for path, data in files.items():
            if only_missing and path.exists():
                continue
            try:
                _write_atomic(path, data)
            except OSError as e:
                raise KeyMaterialError(f"Could not write {path}: {e}") from e
