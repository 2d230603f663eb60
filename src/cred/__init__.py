"""
cred: project secrets, encrypted at rest, pushed where they are needed.

Secrets live in a per-project vault under ``.cred/``. Targets (CI
platforms) receive them write-only; the local vault stays the source
of truth.
"""

import os

__version__ = "0.1.0"
__author__ = "cred contributors"

CRED_DIR_NAME = os.environ.get("CRED_DIR_NAME", ".cred")
