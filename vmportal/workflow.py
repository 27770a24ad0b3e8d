# vmportal/workflow.py
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vmportal import crud, models
from vmportal.errors import AlreadyProcessedError, InvalidSpecError, NotFoundError
from vmportal.hypervisor.runner import CommandRunner
from vmportal.locks import name_lock
from vmportal.provisioner import VMProvisioner
from vmportal.schemas import ApproveOverride, VMRequestCreate, VMSpec

log = logging.getLogger(__name__)

DEFAULT_MEMORY_MB = 1024
DEFAULT_VCPUS = 1
DEFAULT_STORAGE_GB = 10
DEFAULT_APPROVE_MESSAGE = "Your VM request has been approved."
DEFAULT_REJECT_MESSAGE = "Your VM request has been rejected."


class RequestWorkflow:
    """
    pending --approve--> approved
    pending --reject---> rejected

    Both targets are terminal. Approval is only recorded after the VM has
    been provisioned, so a failed provisioning attempt leaves the request
    pending and retryable.
    """

    def __init__(self, db: Session, runner: CommandRunner, provisioner: Optional[VMProvisioner] = None):
        self.db = db
        self.runner = runner
        self.provisioner = provisioner or VMProvisioner(db, runner)

    # ----------------------------
    # queries
    # ----------------------------
    def get_request(self, request_id: str) -> models.VMRequest:
        req = self.db.query(models.VMRequest).filter(models.VMRequest.id == request_id).first()
        if req is None:
            raise NotFoundError("VM request not found")
        return req

    def list_requests(self, user_id: Optional[str] = None) -> List[models.VMRequest]:
        q = self.db.query(models.VMRequest)
        if user_id:
            q = q.filter(models.VMRequest.user_id == user_id)
        return q.order_by(models.VMRequest.created_at.desc()).all()

    # ----------------------------
    # submission
    # ----------------------------
    def submit_request(self, payload: VMRequestCreate) -> models.VMRequest:
        if not (payload.purpose or "").strip():
            raise InvalidSpecError("Purpose is required for VM request")
        if not payload.user_id:
            raise InvalidSpecError("A requesting user is required")

        os_type = payload.os_type
        if payload.vm_type_id:
            vm_type = crud.find_vm_type(self.db, payload.vm_type_id)
            if vm_type is None:
                raise InvalidSpecError(f"VM type {payload.vm_type_id} does not exist")
            if os_type and os_type != vm_type.os_type:
                raise InvalidSpecError(
                    f"OS type '{os_type}' does not match VM type '{vm_type.name}' ({vm_type.os_type})"
                )
            os_type = vm_type.os_type

        req = models.VMRequest(
            user_id=payload.user_id,
            username=payload.username,
            purpose=payload.purpose.strip(),
            course=payload.course,
            duration=payload.duration,
            description=payload.description,
            memory=payload.memory,
            vcpus=payload.vcpus,
            storage=payload.storage,
            os_type=os_type,
            vm_type_id=payload.vm_type_id,
            status=models.REQUEST_PENDING,
        )
        self.db.add(req)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise InvalidSpecError(f"Unknown user {payload.user_id}")
        self.db.refresh(req)
        log.info("VM request %s submitted by %s", req.id, req.user_id)
        return req

    # ----------------------------
    # transitions
    # ----------------------------
    def _require_pending(self, req: models.VMRequest) -> None:
        if req.status != models.REQUEST_PENDING:
            raise AlreadyProcessedError(f"This request has already been {req.status}")

    def _transition(self, req: models.VMRequest, values: dict) -> models.VMRequest:
        # compare-and-swap on the status column
        values = dict(values, updated_at=models.utcnow())
        updated = (
            self.db.query(models.VMRequest)
            .filter(models.VMRequest.id == req.id, models.VMRequest.status == models.REQUEST_PENDING)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(req)
        if updated != 1:
            raise AlreadyProcessedError(f"This request has already been {req.status}")
        return req

    def build_spec(self, req: models.VMRequest, override: Optional[ApproveOverride] = None) -> VMSpec:
        o = override.model_dump(exclude_none=True) if override else {}

        vm_type_id = o.get("vm_type_id") or req.vm_type_id
        if not vm_type_id:
            raise InvalidSpecError("A VM type is required to provision this request")
        vm_type = crud.find_vm_type(self.db, vm_type_id)
        if vm_type is None:
            raise InvalidSpecError(f"VM type {vm_type_id} does not exist")

        # the request's os_type only applies to the type it was submitted for
        requested_os = req.os_type if vm_type_id == req.vm_type_id else None

        iso_path = o.get("iso_path") or vm_type.iso_path
        if not iso_path:
            raise InvalidSpecError(f"VM type '{vm_type.name}' has no install media; supply iso_path")

        description = f"VM created for {req.purpose}"
        if req.course:
            description += f" - Course: {req.course}"

        return VMSpec(
            name=o.get("name") or f"vm-{req.id[:8]}",
            memory=o.get("memory") or req.memory or DEFAULT_MEMORY_MB,
            vcpus=o.get("vcpus") or req.vcpus or DEFAULT_VCPUS,
            storage=o.get("storage") or req.storage or DEFAULT_STORAGE_GB,
            os_type=o.get("os_type") or requested_os or vm_type.os_type,
            iso_path=iso_path,
            vm_type_id=vm_type_id,
            user_id=req.user_id,
            description=o.get("description") or description,
            ip_address=o.get("ip_address"),
        )

    def approve(self, request_id: str,
                override: Optional[ApproveOverride] = None) -> Tuple[models.VMRequest, models.VM]:
        with name_lock(f"request:{request_id}"):
            req = self.get_request(request_id)
            self._require_pending(req)

            spec = self.build_spec(req, override)
            vm = self.provisioner.provision(spec)

            message = (override.message if override else None) or DEFAULT_APPROVE_MESSAGE
            try:
                req = self._transition(req, {
                    "status": models.REQUEST_APPROVED,
                    "vm_id": vm.id,
                    "response_message": message,
                })
            except AlreadyProcessedError:
                log.error("Request %s changed while VM %s was provisioned for it", request_id, vm.internal_name)
                raise
        log.info("VM request %s approved -> VM %s", request_id, vm.name)
        return req, vm

    def reject(self, request_id: str, reason: Optional[str] = None) -> models.VMRequest:
        with name_lock(f"request:{request_id}"):
            req = self.get_request(request_id)
            self._require_pending(req)
            req = self._transition(req, {
                "status": models.REQUEST_REJECTED,
                "response_message": reason or DEFAULT_REJECT_MESSAGE,
            })
        log.info("VM request %s rejected", request_id)
        return req
