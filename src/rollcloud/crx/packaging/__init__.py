"""
The `packaging` sub-package contains modules related to the construction and
verification of CRX packages.

This includes:
- Building CRX2 and CRX3 containers around a zipped extension.
- Orchestrating a build from an archive on disk to a `.crx` and `.id` pair.
- Reading back and verifying the containers it writes.
"""
