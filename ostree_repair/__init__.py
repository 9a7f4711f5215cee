"""ostree-repair: detect and heal corruption in an OSTree object store.

The engine evicts processes holding the store open, takes the store lock,
restores dangling refs, marks incomplete commits partial and re-pulls partial
remote-backed refs. Every step is idempotent.
"""

from __future__ import annotations

from importlib import metadata

try:
    __version__ = metadata.version("ostree-repair")
except metadata.PackageNotFoundError:
    # running from a source checkout that was never installed
    __version__ = "0+unknown"
