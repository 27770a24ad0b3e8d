# vmportal/provisioner.py
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vmportal import crud, models
from vmportal.config import settings
from vmportal.errors import (
    ExecutionError,
    InvalidSpecError,
    OrphanedDomainError,
    PartialProvisioningError,
)
from vmportal.hypervisor import virsh
from vmportal.hypervisor.runner import CommandRunner
from vmportal.locks import name_lock
from vmportal.schemas import VMSpec

log = logging.getLogger(__name__)

# path segments that shadow GET /vm/{name}
RESERVED_NAMES = {"list"}


class VMProvisioner:
    """
    Turns a validated VMSpec into an installed domain backed by a qcow2
    disk, and records it in the ledger. Hypervisor artifacts are never rolled back:
    a failure after the disk exists is raised as PartialProvisioningError so
    the caller can tell it apart from a clean failure.
    """

    def __init__(self, db: Session, runner: CommandRunner, disk_dir: str = None):
        self.db = db
        self.runner = runner
        self.disk_dir = disk_dir or settings.disk_dir

    def validate(self, spec: VMSpec) -> models.VMType:
        if spec.name.strip().lower() in RESERVED_NAMES:
            raise InvalidSpecError(f"VM name '{spec.name}' is reserved")
        if crud.vm_name_taken(self.db, spec.name):
            raise InvalidSpecError(f"VM name '{spec.name}' is already in use")
        if not (spec.iso_path or "").strip():
            raise InvalidSpecError("Install media (iso_path) is required")

        vm_type = crud.find_vm_type(self.db, spec.vm_type_id)
        if vm_type is None:
            raise InvalidSpecError(f"VM type {spec.vm_type_id} does not exist")
        # a stale client may send a type whose template changed since
        if vm_type.os_type != spec.os_type:
            raise InvalidSpecError(
                f"OS type '{spec.os_type}' does not match VM type '{vm_type.name}' ({vm_type.os_type})"
            )
        if (vm_type.iso_path or "") != (spec.iso_path or ""):
            raise InvalidSpecError(
                f"Install media '{spec.iso_path}' does not match VM type '{vm_type.name}' ({vm_type.iso_path})"
            )
        return vm_type

    def provision(self, spec: VMSpec) -> models.VM:
        # Step 1: catalog validation, no side effects
        self.validate(spec)

        # Step 2: unique hypervisor name even for colliding display names
        internal_name = virsh.internal_name_for(spec.name, str(uuid.uuid4()))
        disk_path = virsh.disk_path_for(internal_name, self.disk_dir)

        with name_lock(f"vm:{internal_name}"):
            # Step 3: disk image (directory is usually root-owned)
            log.info("Allocating %sG disk for %s at %s", spec.storage, internal_name, disk_path)
            self.runner.run(virsh.create_disk_cmd(disk_path, spec.storage), allow_escalation=True)

            # Step 4: unattended install, headless
            try:
                self.runner.run(
                    virsh.install_cmd(internal_name, spec.memory, spec.vcpus, disk_path, spec.iso_path, spec.os_type),
                    timeout=settings.install_timeout,
                )
            except ExecutionError as e:
                log.error("Install failed for %s, disk %s left behind: %s", internal_name, disk_path, e.stderr)
                raise PartialProvisioningError(
                    f"Disk allocated but install failed for '{spec.name}': {e.message}",
                    internal_name=internal_name,
                    disk_path=disk_path,
                    stage="install",
                ) from e

            # Step 5: ledger row
            vm = models.VM(
                name=spec.name,
                internal_name=internal_name,
                state="running",
                os_type=spec.os_type,
                disk_path=disk_path,
                memory=spec.memory,
                vcpus=spec.vcpus,
                storage=spec.storage,
                user_id=spec.user_id,
                vm_type_id=spec.vm_type_id,
                ip_address=spec.ip_address,
                description=spec.description,
            )
            try:
                self.db.add(vm)
                self.db.commit()
                self.db.refresh(vm)
            except SQLAlchemyError as e:
                self.db.rollback()
                log.critical(
                    "Domain %s is running but its ledger row could not be written: %s", internal_name, e
                )
                raise OrphanedDomainError(
                    f"VM '{spec.name}' was installed as domain {internal_name} but could not be recorded: {e}",
                    internal_name=internal_name,
                    disk_path=disk_path,
                    stage="persist",
                ) from e

        log.info("Provisioned VM %s as %s (owner=%s)", spec.name, internal_name, spec.user_id)
        return vm
