"""Core logic for turning a zipped extension into a CRX package and its id."""

import os
from pathlib import Path
import tempfile

from pyvider.telemetry import logger

from ..exceptions import (
    InputError,
    OutputError,
    SigningError,
    VerificationError,
)
from ..ids import derive_package_id
from ..keys import KeyStore
from ..models import BuildResult, KeyPair, PackageFormat
from .containers import builder_for
from .reader import CrxReader

ID_SUFFIX = ".id"


def id_path_for(output_path: Path) -> Path:
    return Path(output_path).with_suffix(ID_SUFFIX)


def read_archive(archive_path: Path) -> bytes:
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise InputError(f"Archive not found at: {archive_path}")
    try:
        archive = archive_path.read_bytes()
    except OSError as e:
        raise InputError(f"Could not read archive {archive_path}: {e}") from e
    if not archive:
        raise InputError(f"Archive {archive_path} is empty.")
    return archive


def _stage(path: Path, data: bytes) -> Path:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


def _back_up(path: Path) -> Path | None:
    """Moves an existing destination aside so a failed commit can put it back."""
    if not path.exists():
        return None
    fd, backup_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".bak", dir=path.parent)
    os.close(fd)
    try:
        os.replace(path, backup_name)
    except OSError:
        Path(backup_name).unlink(missing_ok=True)
        raise
    return Path(backup_name)


def _roll_back(committed: list[Path], backups: dict[Path, Path | None]) -> None:
    for path in committed:
        path.unlink(missing_ok=True)
    for path, backup in backups.items():
        if backup is None:
            continue
        try:
            os.replace(backup, path)
        except OSError as e:
            logger.error(
                "Could not restore previous output; it is kept at the backup path",
                output=str(path),
                backup=str(backup),
                error=str(e),
            )


def write_outputs(files: dict[Path, bytes]) -> None:
    """
    Stages every file next to its destination, then renames them all into
    place. Nothing is renamed unless every file was staged, and if any
    rename fails the destinations are restored to their previous contents.
    """
    staged: dict[Path, Path] = {}
    backups: dict[Path, Path | None] = {}
    committed: list[Path] = []
    try:
        for path, data in files.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            staged[path] = _stage(path, data)
        for path, tmp_path in staged.items():
            backups[path] = _back_up(path)
            os.replace(tmp_path, path)
            committed.append(path)
    except OSError as e:
        _roll_back(committed, backups)
        raise OutputError(f"Could not write package output: {e}") from e
    finally:
        for tmp_path in staged.values():
            tmp_path.unlink(missing_ok=True)

    for backup in backups.values():
        if backup is not None:
            backup.unlink(missing_ok=True)


class PackageAssembler:
    def __init__(
        self,
        key_store: KeyStore,
        package_format: PackageFormat | str = PackageFormat.V3,
        verify: bool = True,
    ) -> None:
        self.key_store = key_store
        self.package_format = PackageFormat.parse(package_format)
        self.builder = builder_for(self.package_format)
        self.verify = verify

    def assemble(self, archive: bytes, key_pair: KeyPair) -> tuple[bytes, str]:
        """Builds the container in memory and checks it before returning it."""
        container = self.builder.build(archive, key_pair)
        if self.verify:
            self.check_container(container)
        return container, derive_package_id(key_pair.public_key_der)

    def check_container(self, container: bytes) -> None:
        try:
            reader = CrxReader.from_bytes(container)
            reader.verify(allow_unsigned=not self.package_format.signed)
        except VerificationError as e:
            raise SigningError(
                f"Built {self.package_format.value} package failed self-verification: {e}"
            ) from e
        logger.debug("Package passed self-verification", package_id=reader.package_id)

    def build_package(self, archive_path: Path, output_path: Path) -> BuildResult:
        logger.info(
            "Assembler starting package build",
            package_format=self.package_format.value,
            archive=str(archive_path),
        )
        output_path = Path(output_path)
        key_pair = self.key_store.load_or_generate()
        archive = read_archive(archive_path)
        logger.info("Read archive", archive_size=len(archive))

        container, package_id = self.assemble(archive, key_pair)

        id_path = id_path_for(output_path)
        write_outputs({output_path: container, id_path: package_id.encode("ascii")})
        logger.info(
            "Package written",
            output=str(output_path),
            package_id=package_id,
            size=len(container),
        )
        return BuildResult(
            output_path=output_path,
            package_id=package_id,
            id_path=id_path,
            package_format=self.package_format,
        )


def build_package(
    package_format: PackageFormat | str,
    archive_path: Path | str,
    output_path: Path | str,
    key_storage_path: Path | str,
) -> BuildResult:
    assembler = PackageAssembler(KeyStore(Path(key_storage_path)), package_format)
    return assembler.build_package(Path(archive_path), Path(output_path))
