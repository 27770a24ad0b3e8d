# vmportal/reconciler.py
import logging
import os
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from vmportal import crud, models
from vmportal.config import settings
from vmportal.errors import BusyError, ExecutionError
from vmportal.hypervisor import virsh
from vmportal.hypervisor.runner import CommandRunner
from vmportal.locks import name_lock

log = logging.getLogger(__name__)


class StateReconciler:
    """
    Merges the VM ledger with what the hypervisor reports. The ledger decides
    which VMs exist; the hypervisor decides whether they are alive.
    """

    def __init__(self, db: Session, runner: CommandRunner, disk_dir: str = None):
        self.db = db
        self.runner = runner
        self.disk_dir = disk_dir or settings.disk_dir

    def live_domains(self, only_running: bool = False) -> Dict[str, Dict[str, Any]]:
        raw = self.runner.run(virsh.list_domains_cmd(only_running))
        return {d["name"]: d for d in virsh.parse_domain_list(raw)}

    def list_vms(self, only_running: bool = False) -> List[Dict[str, Any]]:
        live = self.live_domains(only_running)
        ledger = crud.list_vms(self.db)

        merged = []
        for vm in ledger:
            domain = live.get(vm.internal_name)
            if domain is None and only_running:
                continue
            entry = vm.to_dict()
            entry["persisted_state"] = vm.state
            entry["state"] = domain["state"] if domain else virsh.LIVE_STATE_OFFLINE
            entry["live_id"] = domain["id"] if domain else None
            entry["status"] = virsh.normalize_state(entry["state"])
            merged.append(entry)

        unmanaged = set(live) - {vm.internal_name for vm in ledger}
        if unmanaged:
            log.debug("Ignoring %d domains without ledger rows: %s", len(unmanaged), sorted(unmanaged))
        return merged

    def _live_state(self, vm: models.VM, listed: bool) -> Optional[str]:
        """Fresh state of one domain; None when it cannot be determined."""
        try:
            raw = self.runner.run(virsh.domain_cmd("domstate", vm.internal_name))
        except ExecutionError as e:
            if listed:
                log.warning("domstate failed for %s: %s", vm.internal_name, e.stderr)
                return None
            # undefined domain
            return virsh.LIVE_STATE_OFFLINE
        return virsh.parse_domstate(raw) or virsh.LIVE_STATE_OFFLINE

    def sync_states(self) -> int:
        """Write live states into the ledger; returns how many rows changed."""
        live = self.live_domains(only_running=False)
        changed = 0
        for vm in crud.list_vms(self.db):
            domain = live.get(vm.internal_name)
            live_state = domain["state"] if domain else virsh.LIVE_STATE_OFFLINE
            if vm.state == live_state:
                continue
            # busy names are being changed right now, the next pass picks them up
            try:
                with name_lock(f"vm:{vm.internal_name}", wait=0):
                    self.db.refresh(vm)
                    live_state = self._live_state(vm, listed=domain is not None)
                    if live_state is None or vm.state == live_state:
                        continue
                    log.info("State drift on %s: ledger=%s live=%s", vm.internal_name, vm.state, live_state)
                    vm.state = live_state
                    vm.updated_at = models.utcnow()
                    self.db.commit()
            except BusyError:
                log.debug("Skipping state sync for busy VM %s", vm.internal_name)
                continue
            changed += 1
        return changed

    def _referenced_disks(self) -> Set[str]:
        rows = self.db.query(models.VM.disk_path).filter(models.VM.disk_path.isnot(None)).all()
        return {os.path.normpath(path) for (path,) in rows}

    def cleanup_unused_disks(self) -> List[str]:
        """
        Remove qcow2 files in the disk directory that no ledger row points at.
        Files whose name matches a defined domain are kept, as are files whose
        VM name is locked (a provision in flight).
        """
        raw = self.runner.run(virsh.list_disks_cmd(self.disk_dir), allow_escalation=True)
        on_disk = [line.strip() for line in raw.splitlines() if line.strip().endswith(".qcow2")]
        if not on_disk:
            return []
        live = self.live_domains(only_running=False)

        removed = []
        for path in sorted(on_disk):
            internal_name = virsh.internal_name_from_disk(path)
            if internal_name in live:
                log.info("Keeping disk %s of defined domain %s", path, internal_name)
                continue
            if os.path.normpath(path) in self._referenced_disks():
                continue
            try:
                with name_lock(f"vm:{internal_name}", wait=0):
                    # a provision may have recorded the row since the first check
                    self.db.expire_all()
                    if os.path.normpath(path) in self._referenced_disks():
                        continue
                    self.runner.run(virsh.remove_file_cmd(path), allow_escalation=True)
            except BusyError:
                log.info("Skipping disk %s, VM %s is busy", path, internal_name)
                continue
            except ExecutionError as e:
                log.warning("Failed to remove unused disk %s: %s", path, e.stderr)
                continue
            log.info("Removed unused disk %s", path)
            removed.append(path)
        return removed
