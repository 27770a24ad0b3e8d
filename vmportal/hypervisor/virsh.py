# vmportal/hypervisor/virsh.py
"""
Command vocabulary for the libvirt CLI tools and parsers for their text
output. Nothing here executes anything; callers hand the argument lists to
CommandRunner.
"""
import re
from typing import Dict, List, Optional

from vmportal.config import settings

STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"
STATUS_SUSPENDED = "suspended"
STATUS_CREATING = "creating"
STATUS_ERROR = "error"

# virsh wording for a defined but inactive domain
LIVE_STATE_OFFLINE = "shut off"

_WHITESPACE = re.compile(r"\s+")
_COLUMN_SPLIT = re.compile(r"\s{2,}")


def _virsh(*args: str) -> List[str]:
    cmd = [settings.virsh_bin]
    if settings.libvirt_uri:
        cmd += ["--connect", settings.libvirt_uri]
    return cmd + list(args)


def list_domains_cmd(only_running: bool = False) -> List[str]:
    return _virsh("list") if only_running else _virsh("list", "--all")


def domain_cmd(action: str, domain: str) -> List[str]:
    """start / destroy / shutdown / reboot / suspend / resume / undefine / dominfo / dommemstat / domstate"""
    return _virsh(action, domain)


def create_disk_cmd(disk_path: str, size_gb: int) -> List[str]:
    return [settings.qemu_img_bin, "create", "-f", "qcow2", disk_path, f"{int(size_gb)}G"]


def os_variant_for(os_type: Optional[str]) -> str:
    family = (os_type or "").strip().lower()
    if family == "linux":
        return "linux2022"
    if family == "windows":
        return "win10"
    return "detect=on,require=off"


def install_cmd(name: str, memory_mb: int, vcpus: int, disk_path: str,
                iso_path: str, os_type: Optional[str]) -> List[str]:
    cmd = [
        settings.virt_install_bin,
        "--name", name,
        "--memory", str(int(memory_mb)),
        "--vcpus", str(int(vcpus)),
        "--disk", f"path={disk_path},format=qcow2",
        "--cdrom", iso_path,
        "--os-variant", os_variant_for(os_type),
        "--graphics", "none",
        "--noautoconsole",
    ]
    if settings.libvirt_uri:
        cmd[1:1] = ["--connect", settings.libvirt_uri]
    return cmd


def remove_file_cmd(path: str) -> List[str]:
    return ["rm", "-f", path]


def list_disks_cmd(disk_dir: str) -> List[str]:
    return ["find", disk_dir, "-maxdepth", "1", "-type", "f", "-name", "*.qcow2"]


def sanitize_name(display_name: str) -> str:
    return _WHITESPACE.sub("-", display_name.strip())


def internal_name_for(display_name: str, vm_uuid: str) -> str:
    return f"{sanitize_name(display_name)}-{vm_uuid}"


def disk_path_for(internal_name: str, disk_dir: Optional[str] = None) -> str:
    base = (disk_dir or settings.disk_dir).rstrip("/")
    return f"{base}/{internal_name}.qcow2"


def parse_domain_list(raw: str) -> List[Dict[str, Optional[str]]]:
    """
    Parse ``virsh list`` output:

         Id   Name        State
        ----------------------------
         1    web-01      running
         -    db-01       shut off

    into [{"id": "1", "name": "web-01", "state": "running"}, ...].
    Inactive domains have id None.
    """
    domains = []
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("-----"):
            continue
        parts = _COLUMN_SPLIT.split(stripped)
        if len(parts) < 3:
            continue
        if parts[0].lower() == "id" and parts[1].lower() == "name":
            continue
        dom_id, name, state = parts[0], parts[1], " ".join(parts[2:])
        domains.append({
            "id": dom_id if dom_id != "-" else None,
            "name": name,
            "state": state,
        })
    return domains


def parse_dominfo(raw: str) -> Dict[str, str]:
    """'Max memory:     2097152 KiB' -> {'max_memory': '2097152 KiB'}"""
    info = {}
    for line in raw.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = _WHITESPACE.sub("_", key.strip().lower())
        value = value.strip()
        if key and value:
            info[key] = value
    return info


def parse_dommemstat(raw: str) -> Dict[str, str]:
    stats = {}
    for line in raw.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            stats[parts[0]] = parts[1]
    return stats


def normalize_state(state: Optional[str]) -> str:
    """Map free-text hypervisor/ledger state onto the closed status set."""
    if not state:
        return STATUS_ERROR
    s = state.lower()
    if "running" in s:
        return STATUS_RUNNING
    if "shut off" in s or "shutoff" in s or s == "stopped":
        return STATUS_STOPPED
    if "paused" in s or "suspended" in s:
        return STATUS_SUSPENDED
    if "creating" in s or "building" in s:
        return STATUS_CREATING
    return STATUS_ERROR


def parse_domstate(raw: str) -> Optional[str]:
    """``virsh domstate`` prints the state on its first line, e.g. 'shut off'."""
    for line in raw.splitlines():
        if line.strip():
            return line.strip()
    return None


def internal_name_from_disk(path: str) -> str:
    """Inverse of disk_path_for: '/images/web-1.qcow2' -> 'web-1'."""
    name = path.rstrip("/").rsplit("/", 1)[-1]
    return name[:-len(".qcow2")] if name.endswith(".qcow2") else name
