# vmportal/api/vms.py
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vmportal.db import get_db
from vmportal.errors import NotFoundError
from vmportal.hypervisor.runner import CommandRunner, get_runner
from vmportal.lifecycle import ACTIONS, LifecycleController
from vmportal.provisioner import VMProvisioner
from vmportal.reconciler import StateReconciler
from vmportal.schemas import VMSpec, VMUpdate

logger = logging.getLogger("vmportal.api.vms")
router = APIRouter(prefix="/vm", tags=["vms"])


@router.post("")
def create_vm(spec: VMSpec, db: Session = Depends(get_db), runner: CommandRunner = Depends(get_runner)):
    vm = VMProvisioner(db, runner).provision(spec)
    return {"success": True, "message": f"VM '{vm.name}' created", "vm": vm.to_dict()}


@router.get("/list")
def list_vms(only_running: bool = False, db: Session = Depends(get_db),
             runner: CommandRunner = Depends(get_runner)):
    vms = StateReconciler(db, runner).list_vms(only_running=only_running)
    return {"success": True, "message": f"{len(vms)} VMs", "vms": vms}


# maintenance routes are registered before /{action}/{name}
@router.post("/maintenance/cleanup-disks")
def cleanup_disks(db: Session = Depends(get_db), runner: CommandRunner = Depends(get_runner)):
    removed = StateReconciler(db, runner).cleanup_unused_disks()
    return {"success": True, "message": f"Removed {len(removed)} unused disks", "removed": removed}


@router.post("/maintenance/sync-states")
def sync_states(db: Session = Depends(get_db), runner: CommandRunner = Depends(get_runner)):
    changed = StateReconciler(db, runner).sync_states()
    return {"success": True, "message": f"Updated {changed} VM states", "changed": changed}


@router.get("/{name}")
def get_vm_info(name: str, db: Session = Depends(get_db), runner: CommandRunner = Depends(get_runner)):
    details = LifecycleController(db, runner).info(name)
    return {"success": True, "message": "VM info retrieved", "vm": details}


@router.put("/{name}")
def update_vm(name: str, payload: VMUpdate, db: Session = Depends(get_db),
              runner: CommandRunner = Depends(get_runner)):
    vm = LifecycleController(db, runner).update(name, payload)
    return {"success": True, "message": f"VM '{vm.name}' updated", "vm": vm.to_dict()}


@router.post("/{action}/{name}")
def vm_action(action: str, name: str, db: Session = Depends(get_db),
              runner: CommandRunner = Depends(get_runner)):
    if action not in ACTIONS:
        raise NotFoundError(f"Unknown VM action '{action}'")
    vm = LifecycleController(db, runner).perform(action, name)
    logger.info("%s requested for %s", action, vm.internal_name)
    return {"success": True, "message": f"VM '{vm.name}' {action} issued", "vm": vm.to_dict()}


@router.delete("/{name}")
def delete_vm(name: str, remove_storage: bool = False, db: Session = Depends(get_db),
              runner: CommandRunner = Depends(get_runner)):
    deleted = LifecycleController(db, runner).delete(name, remove_storage=remove_storage)
    return {"success": True, "message": f"VM '{name}' deleted", "deleted": deleted}
