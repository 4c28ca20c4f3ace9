# rollcloud-crx/src/rollcloud/crx/__init__.py
"""
This package turns a zipped browser extension into an installable, signed
CRX package (format version 2 or 3) and derives the extension id browsers
use to address it.
"""

from .ids import derive_package_id, manifest_key
from .keys import KeyStore
from .models import BuildResult, KeyPair, PackageFormat
from .packaging.orchestrator import PackageAssembler, build_package

# NOTE: The reader is NOT re-exported here; the `verify` command in the CLI
# imports it directly.

__all__ = [
    "BuildResult",
    "KeyPair",
    "KeyStore",
    "PackageAssembler",
    "PackageFormat",
    "build_package",
    "derive_package_id",
    "manifest_key",
]
