# vmportal/crud.py
import logging
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vmportal import models
from vmportal.errors import InUseError, InvalidSpecError, NotFoundError

log = logging.getLogger(__name__)


# ----------------------------
# VM types (catalog)
# ----------------------------
def list_vm_types(db: Session) -> List[models.VMType]:
    return db.query(models.VMType).order_by(models.VMType.name.asc()).all()


def find_vm_type(db: Session, vm_type_id: Optional[str]) -> Optional[models.VMType]:
    if not vm_type_id:
        return None
    return db.query(models.VMType).filter(models.VMType.id == vm_type_id).first()


def get_vm_type(db: Session, vm_type_id: str) -> models.VMType:
    vm_type = find_vm_type(db, vm_type_id)
    if vm_type is None:
        raise NotFoundError(f"VM type {vm_type_id} not found")
    return vm_type


def _require_type_fields(data) -> None:
    if not (data.name or "").strip():
        raise InvalidSpecError("VM type name is required")
    if not (data.os_type or "").strip():
        raise InvalidSpecError("OS type is required")


def _commit_type(db: Session, vm_type: models.VMType) -> models.VMType:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidSpecError(f"VM type name '{vm_type.name}' already exists")
    db.refresh(vm_type)
    return vm_type


def create_vm_type(db: Session, data) -> models.VMType:
    _require_type_fields(data)
    vm_type = models.VMType(
        name=data.name.strip(),
        os_type=data.os_type.strip(),
        iso_path=data.iso_path,
        description=data.description,
    )
    db.add(vm_type)
    vm_type = _commit_type(db, vm_type)
    log.info("Created VM type %s (%s)", vm_type.name, vm_type.id)
    return vm_type


def update_vm_type(db: Session, vm_type_id: str, data) -> models.VMType:
    _require_type_fields(data)
    vm_type = get_vm_type(db, vm_type_id)
    vm_type.name = data.name.strip()
    vm_type.os_type = data.os_type.strip()
    vm_type.iso_path = data.iso_path
    vm_type.description = data.description
    vm_type.updated_at = models.utcnow()
    return _commit_type(db, vm_type)


def count_vm_type_references(db: Session, vm_type_id: str) -> int:
    in_vms = db.query(func.count(models.VM.id)).filter(models.VM.vm_type_id == vm_type_id).scalar() or 0
    in_requests = (
        db.query(func.count(models.VMRequest.id))
        .filter(models.VMRequest.vm_type_id == vm_type_id)
        .scalar()
        or 0
    )
    return int(in_vms) + int(in_requests)


def delete_vm_type(db: Session, vm_type_id: str) -> bool:
    vm_type = get_vm_type(db, vm_type_id)
    if count_vm_type_references(db, vm_type_id) > 0:
        raise InUseError(f"Cannot delete VM type '{vm_type.name}' that is in use")
    db.delete(vm_type)
    db.commit()
    log.info("Deleted VM type %s (%s)", vm_type.name, vm_type_id)
    return True


# ----------------------------
# VM ledger lookups
# ----------------------------
def find_vm(db: Session, key: str) -> Optional[models.VM]:
    """Lookup by internal hypervisor name first, then by display name."""
    rows = (
        db.query(models.VM)
        .filter(or_(models.VM.internal_name == key, models.VM.name == key))
        .all()
    )
    for row in rows:
        if row.internal_name == key:
            return row
    return rows[0] if rows else None


def get_vm(db: Session, key: str) -> models.VM:
    vm = find_vm(db, key)
    if vm is None:
        raise NotFoundError(f"VM '{key}' not found")
    return vm


def vm_name_taken(db: Session, name: str) -> bool:
    return db.query(models.VM.id).filter(models.VM.name == name).first() is not None


def list_vms(db: Session) -> List[models.VM]:
    return db.query(models.VM).order_by(models.VM.created_at.desc()).all()
