"""Error taxonomy for a repair run.

Fatal errors abort the whole run; the CLI prints ``remediation`` under the
error line. Recoverable conditions (``ObjectNotFound`` while loading a ref
target, ``MissingObject`` during traversal, ``FetchError`` while healing) are
caught by the phase that owns them and never reach the CLI.
"""

from __future__ import annotations


class RepairError(Exception):
    """Base class for every error raised by ostree_repair."""

    remediation: str | None = None

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class ConfigError(RepairError):
    remediation = "Do fix the configuration file or command line flags, then re-run."


class StoreLayoutError(RepairError):
    remediation = "Do pass --repo or --sysroot pointing at an existing OSTree repository."


class PrivilegeError(RepairError):
    remediation = "Do re-run the command as root (for example with sudo)."


class OwnershipMismatch(RepairError):
    remediation = (
        "Do re-run as the user owning the repository; "
        "this tool refuses to touch a store owned by someone else."
    )


class LivenessMarkerMissing(RepairError):
    remediation = (
        "Do re-invoke the tool; if the marker is still missing the store has an "
        "unexpected layout and must be repaired by hand."
    )


class StoreWriteError(RepairError):
    remediation = "Do check that the repository is writable by root and not mounted read-only, then re-run."


class ReportWriteError(RepairError):
    remediation = "Do pass a --report path in a writable directory, then re-run."


class IllegalTransition(RepairError):
    pass


class LockError(RepairError):
    remediation = "Do check that the lock file can be created and opened by root, then re-run."


class LockTimeout(LockError):
    remediation = "Do stop whatever holds the repository lock, or raise --lock-timeout, then re-run."


class ObjectIndexError(RepairError):
    remediation = "Do check that the objects directory exists and is readable by root."


class LoadError(RepairError):
    """Loading an object failed for a reason other than absence (corrupt data, I/O)."""

    remediation = "The repository is damaged beyond what this tool repairs; restore it from a backup or re-create it."

    def __init__(self, checksum: str, message: str) -> None:
        super().__init__(f"{checksum}: {message}")
        self.checksum = checksum


class ObjectNotFound(LoadError):
    """The requested object is absent from the store."""

    remediation = None


class TraversalError(RepairError):
    pass


class MissingObject(TraversalError):
    """A structural object (commit or dirtree) needed to continue a traversal is absent."""

    def __init__(self, checksum: str, kind: str) -> None:
        super().__init__(f"missing {kind} object {checksum}")
        self.checksum = checksum
        self.kind = kind


class FetchError(RepairError):
    def __init__(self, remote: str, checksum: str, message: str) -> None:
        super().__init__(f"fetch of {checksum} from {remote} failed: {message}")
        self.remote = remote
        self.checksum = checksum


class BackendUnavailable(RepairError):
    remediation = "Do install PyGObject and the OSTree-1.0 GObject introspection typelib (gir1.2-ostree-1.0)."
