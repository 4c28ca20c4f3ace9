"""Pytest fixtures for the entire rollcloud-crx test suite."""

from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import rsa
import pytest

from rollcloud.crx.crypto import generate_keys, private_key_to_pem, public_key_to_pem
from rollcloud.crx.keys import KeyStore
from rollcloud.crx.models import KeyPair

# A ZIP holding nothing but its End Of Central Directory record.
EMPTY_ZIP = b"PK\x05\x06" + b"\x00" * 18


@pytest.fixture(scope="session")
def rsa_keys() -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generates a single 2048-bit RSA key pair for the entire test session."""
    return generate_keys()


@pytest.fixture(scope="session")
def private_key(rsa_keys: tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]) -> rsa.RSAPrivateKey:
    return rsa_keys[0]


@pytest.fixture(scope="session")
def key_pair(private_key: rsa.RSAPrivateKey) -> KeyPair:
    return KeyPair.from_private_key(private_key)


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    """A second, unrelated key pair for mismatch tests."""
    private_key, _ = generate_keys()
    return KeyPair.from_private_key(private_key)


@pytest.fixture(scope="session")
def private_key_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key_to_pem(private_key)


@pytest.fixture(scope="session")
def public_key_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return public_key_to_pem(private_key.public_key())


@pytest.fixture
def key_store(tmp_path: Path, private_key_pem: bytes) -> KeyStore:
    """A key directory pre-populated with the session key."""
    keys_dir = tmp_path / "keys"
    keys_dir.mkdir()
    (keys_dir / "private.pem").write_bytes(private_key_pem)
    return KeyStore(keys_dir)


@pytest.fixture
def empty_zip() -> bytes:
    return EMPTY_ZIP


@pytest.fixture
def archive_path(tmp_path: Path) -> Path:
    path = tmp_path / "dist" / "extension.zip"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(EMPTY_ZIP)
    return path
