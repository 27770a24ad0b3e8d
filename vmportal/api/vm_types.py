# vmportal/api/vm_types.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vmportal import crud
from vmportal.db import get_db
from vmportal.schemas import VMTypeIn

router = APIRouter(prefix="/vm-types", tags=["vm-types"])


@router.get("")
def list_vm_types(db: Session = Depends(get_db)):
    types = crud.list_vm_types(db)
    return {"success": True, "message": f"{len(types)} VM types", "vm_types": [t.to_dict() for t in types]}


@router.post("")
def create_vm_type(payload: VMTypeIn, db: Session = Depends(get_db)):
    vm_type = crud.create_vm_type(db, payload)
    return {"success": True, "message": "VM type created", "vm_type": vm_type.to_dict()}


@router.get("/{vm_type_id}")
def get_vm_type(vm_type_id: str, db: Session = Depends(get_db)):
    vm_type = crud.get_vm_type(db, vm_type_id)
    return {"success": True, "message": "VM type retrieved", "vm_type": vm_type.to_dict()}


@router.put("/{vm_type_id}")
def update_vm_type(vm_type_id: str, payload: VMTypeIn, db: Session = Depends(get_db)):
    vm_type = crud.update_vm_type(db, vm_type_id, payload)
    return {"success": True, "message": "VM type updated", "vm_type": vm_type.to_dict()}


@router.delete("/{vm_type_id}")
def delete_vm_type(vm_type_id: str, db: Session = Depends(get_db)):
    deleted = crud.delete_vm_type(db, vm_type_id)
    return {"success": True, "message": "VM type deleted", "deleted": deleted}
