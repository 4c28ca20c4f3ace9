"""The `rccrx` command-line interface."""

import importlib.metadata
from pathlib import Path
import tomllib
from typing import Any

import click

from .exceptions import BuildError, InvalidHeaderError, VerificationError
from .ids import derive_package_id
from .keys import KeyStore
from .models import PackageFormat
from .packaging.orchestrator import PackageAssembler
from .packaging.reader import CrxReader

try:
    __version__ = importlib.metadata.version("rollcloud-crx")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"

DEFAULT_MANIFEST = "pyproject.toml"
DEFAULT_CONFIG: dict[str, str] = {
    "keys_dir": "keys",
    "archive": "dist/rollcloud-chrome.zip",
    "output": "dist/rollcloud-chrome.crx",
    "format": PackageFormat.V3.value,
}


def load_config(manifest_path: Path | None) -> dict[str, Any]:
    """
    Reads ``[tool.rollcloud.crx]`` from a TOML manifest, resolving relative
    paths against the manifest's directory. A missing manifest yields the
    defaults relative to the current directory.
    """
    config: dict[str, Any] = dict(DEFAULT_CONFIG)
    base_dir = Path.cwd()
    if manifest_path is not None and manifest_path.is_file():
        with manifest_path.open("rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise click.UsageError(f"Could not parse {manifest_path}: {e}") from e
        crx_conf = data.get("tool", {}).get("rollcloud", {}).get("crx", {})
        if not isinstance(crx_conf, dict):
            raise click.UsageError("[tool.rollcloud.crx] must be a table.")
        unknown = sorted(set(crx_conf) - set(DEFAULT_CONFIG))
        if unknown:
            raise click.UsageError(
                f"Unknown keys in [tool.rollcloud.crx]: {', '.join(unknown)}"
            )
        for key, value in crx_conf.items():
            if not isinstance(value, str):
                raise click.UsageError(
                    f"[tool.rollcloud.crx] {key} must be a string, "
                    f"got {type(value).__name__}: {value!r}"
                )
        config.update(crx_conf)
        base_dir = manifest_path.parent

    for key in ("keys_dir", "archive", "output"):
        config[key] = base_dir / config[key]
    return config


def _resolve(
    manifest: str | None, overrides: dict[str, str | None]
) -> dict[str, Any]:
    manifest_path = Path(manifest) if manifest else Path(DEFAULT_MANIFEST)
    config = load_config(manifest_path)
    for key, value in overrides.items():
        if value is not None:
            config[key] = Path(value) if key != "format" else value
    return config


manifest_option = click.option(
    "--manifest",
    default=None,
    type=click.Path(dir_okay=False, resolve_path=True),
    help="TOML file holding a [tool.rollcloud.crx] table (default: ./pyproject.toml).",
)
keys_dir_option = click.option(
    "--keys-dir",
    type=click.Path(file_okay=False, resolve_path=True),
    help="Override the key directory from the manifest.",
)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(
    __version__,
    "-V",
    "--version",
    prog_name="rccrx",
    message="%(prog)s version %(version)s",
)
def cli() -> None:
    """CRX extension package builder."""
    pass


@cli.command()
@keys_dir_option
@manifest_option
def keygen(keys_dir: str | None, manifest: str | None) -> None:
    """Generates the RSA key pair used to sign packages."""
    config = _resolve(manifest, {"keys_dir": keys_dir})
    store = KeyStore(config["keys_dir"])
    if store.exists():
        click.secho(
            f"⚠️  Keys already exist in '{store.directory}'. "
            "To regenerate, please delete them first.",
            fg="yellow",
        )
        return
    try:
        key_pair = store.generate()
    except BuildError as e:
        click.secho(f"❌ Keygen failed: {e}", fg="red", err=True)
        raise click.Abort() from e

    click.secho(f"✅ Key pair generated in '{store.directory}'.", fg="green")
    click.echo(f"🆔 Extension ID: {derive_package_id(key_pair.public_key_der)}")


@cli.command("package")
@click.option(
    "--format",
    "package_format",
    type=click.Choice([f.value for f in PackageFormat], case_sensitive=False),
    help="Container format (overrides the manifest; default v3).",
)
@click.option(
    "--archive",
    type=click.Path(dir_okay=False, resolve_path=True),
    help="Override the input ZIP path from the manifest.",
)
@click.option(
    "--out",
    type=click.Path(dir_okay=False, resolve_path=True),
    help="Override the output .crx path from the manifest.",
)
@keys_dir_option
@manifest_option
def package_command(
    package_format: str | None,
    archive: str | None,
    out: str | None,
    keys_dir: str | None,
    manifest: str | None,
) -> None:
    """Packages a zipped extension as a signed CRX and writes its id."""
    config = _resolve(
        manifest,
        {"format": package_format, "archive": archive, "output": out, "keys_dir": keys_dir},
    )
    try:
        fmt = PackageFormat.parse(config["format"])
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    click.echo(f"🚀 Packaging {config['archive']} as {fmt.value}...")
    if not fmt.signed:
        click.secho(
            "⚠️  UNSIGNED package requested. Use it for local testing only.",
            fg="yellow",
            err=True,
        )
    try:
        assembler = PackageAssembler(KeyStore(config["keys_dir"]), fmt)
        result = assembler.build_package(config["archive"], config["output"])
    except BuildError as e:
        click.secho(f"❌ Packaging Failed:\n{e}", fg="red", err=True)
        raise click.Abort() from e

    click.secho(f"✅ Package built successfully: {result.output_path}", fg="green")
    click.echo(f"🆔 Extension ID: {result.package_id}")


@cli.command("verify")
@click.argument(
    "package_file",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
)
@click.option(
    "--allow-unsigned",
    is_flag=True,
    default=False,
    help="Accept CRX2 packages that carry no key or signature.",
)
def verify_command(package_file: str, allow_unsigned: bool) -> None:
    """Verifies a CRX package's header and signatures."""
    click.echo(f"🔍 Verifying package '{package_file}'...")
    try:
        reader = CrxReader(Path(package_file))
        click.echo(reader.get_info())
        reader.verify(allow_unsigned=allow_unsigned)
    except InvalidHeaderError as e:
        click.secho(f"❌ Header validation failed: {e}", fg="red", err=True)
        raise click.Abort() from e
    except VerificationError as e:
        click.secho(f"❌ Signature verification failed: {e}", fg="red", err=True)
        raise click.Abort() from e

    if reader.is_signed:
        click.secho("✅ Cryptographic verification successful.", fg="green")
    else:
        click.secho("⚠️  Package is unsigned; nothing to verify.", fg="yellow")


def _load_existing(keys_dir: str | None, manifest: str | None) -> KeyStore:
    config = _resolve(manifest, {"keys_dir": keys_dir})
    store = KeyStore(config["keys_dir"])
    if not store.exists():
        raise click.UsageError(
            f"No key pair found in '{store.directory}'. Please run `rccrx keygen` first."
        )
    return store


@cli.command("id")
@keys_dir_option
@manifest_option
def id_command(keys_dir: str | None, manifest: str | None) -> None:
    """Prints the extension id for the stored key."""
    store = _load_existing(keys_dir, manifest)
    try:
        key_pair = store.load()
    except BuildError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        raise click.Abort() from e
    click.echo(derive_package_id(key_pair.public_key_der))


@cli.command("manifest-key")
@keys_dir_option
@manifest_option
def manifest_key_command(keys_dir: str | None, manifest: str | None) -> None:
    """Prints the base64 DER public key for a manifest's `key` field."""
    store = _load_existing(keys_dir, manifest)
    try:
        key_pair = store.load()
    except BuildError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        raise click.Abort() from e
    click.echo(key_pair.manifest_key)


main = cli

if __name__ == "__main__":
    cli()
