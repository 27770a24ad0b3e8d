# vmportal/lifecycle.py
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from vmportal import crud, models
from vmportal.errors import ExecutionError
from vmportal.hypervisor import virsh
from vmportal.hypervisor.runner import CommandRunner
from vmportal.locks import name_lock
from vmportal.schemas import VMUpdate

log = logging.getLogger(__name__)

# action -> (virsh verb, persisted state afterwards; None keeps the current one)
ACTIONS = {
    "start": ("start", "running"),
    "stop": ("destroy", "stopped"),
    "shutdown": ("shutdown", "shutting-down"),
    # reboot keeps the logical run-state, the ledger is left alone
    "restart": ("reboot", None),
    "suspend": ("suspend", "suspended"),
    "resume": ("resume", "running"),
}

UPDATABLE_FIELDS = ("description", "ip_address", "user_id")


class LifecycleController:
    def __init__(self, db: Session, runner: CommandRunner):
        self.db = db
        self.runner = runner

    def _set_state(self, vm: models.VM, state: Optional[str]) -> models.VM:
        if state is not None:
            vm.state = state
            vm.updated_at = models.utcnow()
            self.db.commit()
            self.db.refresh(vm)
        return vm

    def perform(self, action: str, key: str) -> models.VM:
        verb, new_state = ACTIONS[action]
        vm = crud.get_vm(self.db, key)
        with name_lock(f"vm:{vm.internal_name}"):
            self.runner.run(virsh.domain_cmd(verb, vm.internal_name))
            log.info("%s %s (%s)", action, vm.name, vm.internal_name)
            return self._set_state(vm, new_state)

    def start(self, key: str) -> models.VM:
        return self.perform("start", key)

    def stop(self, key: str) -> models.VM:
        return self.perform("stop", key)

    def shutdown(self, key: str) -> models.VM:
        return self.perform("shutdown", key)

    def restart(self, key: str) -> models.VM:
        return self.perform("restart", key)

    def suspend(self, key: str) -> models.VM:
        return self.perform("suspend", key)

    def resume(self, key: str) -> models.VM:
        return self.perform("resume", key)

    def delete(self, key: str, remove_storage: bool = False) -> bool:
        """
        Destroy (best effort), undefine, optionally remove the disk, then drop
        the ledger row. A failed undefine leaves both disk and row in place so
        the call can be retried.
        """
        vm = crud.get_vm(self.db, key)
        display_name, internal_name = vm.name, vm.internal_name
        with name_lock(f"vm:{internal_name}"):
            try:
                self.runner.run(virsh.domain_cmd("destroy", internal_name))
            except ExecutionError as e:
                # usually "domain is not running"
                log.info("Ignoring destroy failure for %s before delete: %s", internal_name, e.stderr)

            self.runner.run(virsh.domain_cmd("undefine", internal_name))

            if remove_storage and vm.disk_path:
                try:
                    self.runner.run(virsh.remove_file_cmd(vm.disk_path), allow_escalation=True)
                except ExecutionError as e:
                    log.warning(
                        "Could not remove disk %s of %s, leaving it for the cleanup sweep: %s",
                        vm.disk_path, internal_name, e.stderr,
                    )

            self.db.delete(vm)
            self.db.commit()
        log.info("Deleted VM %s (%s), remove_storage=%s", display_name, internal_name, remove_storage)
        return True

    def info(self, key: str) -> Dict[str, Any]:
        vm = crud.get_vm(self.db, key)
        live = virsh.parse_dominfo(self.runner.run(virsh.domain_cmd("dominfo", vm.internal_name)))
        try:
            stats_raw = self.runner.run(virsh.domain_cmd("dommemstat", vm.internal_name))
            memory_stats = virsh.parse_dommemstat(stats_raw)
        except ExecutionError as e:
            # inactive domains have no balloon statistics
            log.debug("No memory stats for %s: %s", vm.internal_name, e.stderr)
            memory_stats = {}

        details = vm.to_dict()
        # id/name/uuid/state in dominfo are the hypervisor's, keep the ledger's
        details["domain_id"] = live.pop("id", None)
        details["domain_uuid"] = live.pop("uuid", None)
        live.pop("name", None)
        live_state = live.pop("state", None)
        details.update(live)
        details["live_state"] = live_state
        details["status"] = virsh.normalize_state(live_state or vm.state)
        details["memory_stats"] = memory_stats
        return details

    def update(self, key: str, data: VMUpdate) -> models.VM:
        vm = crud.get_vm(self.db, key)
        changes = data.model_dump(exclude_unset=True)
        for field in UPDATABLE_FIELDS:
            if field in changes:
                setattr(vm, field, changes[field])
        vm.updated_at = models.utcnow()
        self.db.commit()
        self.db.refresh(vm)
        return vm
