from __future__ import annotations


class ProvisioningError(Exception):
    """Base error for the provisioning service.

    ``message`` is the short, status-file friendly text. ``detail`` carries the
    underlying cause (I/O error text, store error, command stderr) when known.
    """

    def __init__(self, message: str, detail: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class RecordError(ProvisioningError):
    """Missing, unreadable or unusable device record."""


class ConnectivityError(ProvisioningError):
    """DNS or HTTPS reachability failure."""


class MaterializationError(ProvisioningError):
    """Writing credentials or runtime configuration failed."""


class DetectionError(ProvisioningError):
    """Existing installation could not be inspected."""


class ActivationError(ProvisioningError):
    """The install/activate collaborator reported failure."""


class NotConnectedError(RuntimeError):
    """A record store lookup was attempted before ``connect()``."""


class CommandError(RuntimeError):
    """A subprocess exited non-zero."""

    def __init__(self, argv: list[str], returncode: int, stderr: str) -> None:
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(argv)}\n{stderr}")
