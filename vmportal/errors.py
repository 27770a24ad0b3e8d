# vmportal/errors.py
"""
Error taxonomy shared by the hypervisor services and the
HTTP layer. Every error carries an HTTP status so the API can render the
``{success, message}`` envelope without knowing the concrete type.
"""
from typing import Optional, Sequence


class PortalError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExecutionError(PortalError):
    """An external command failed or could not be run."""

    status_code = 502

    def __init__(self, command: Sequence[str], stderr: str, returncode: Optional[int] = None):
        self.command = list(command)
        self.stderr = (stderr or "").strip()
        self.returncode = returncode
        detail = self.stderr or "unknown error"
        super().__init__(f"Command failed ({' '.join(self.command)}): {detail}")


class InvalidSpecError(PortalError):
    status_code = 400


class NotFoundError(PortalError):
    status_code = 404


class InUseError(PortalError):
    status_code = 409


class AlreadyProcessedError(PortalError):
    status_code = 409


class BusyError(PortalError):
    status_code = 423


class PartialProvisioningError(PortalError):
    """
    Provisioning stopped after hypervisor artifacts were created. Nothing is
    rolled back; the cleanup sweep reclaims orphaned disks and operators
    reconcile domains by hand.
    """

    status_code = 500

    def __init__(self, message: str, internal_name: str, disk_path: str, stage: str):
        super().__init__(message)
        self.internal_name = internal_name
        self.disk_path = disk_path
        self.stage = stage


class OrphanedDomainError(PartialProvisioningError):
    """The domain was installed and is running but its ledger row was not written."""
