# tests/test_reconciler.py
from vmportal import models
from vmportal.lifecycle import LifecycleController
from vmportal.locks import name_lock
from vmportal.provisioner import VMProvisioner
from vmportal.reconciler import StateReconciler
from vmportal.schemas import VMSpec

LIST_ALL = """ Id   Name          State
----------------------------------
 1    web-1111      running
 -    db-2222       shut off
 5    stray-9999    running
"""

LIST_RUNNING = """ Id   Name          State
----------------------------------
 1    web-1111      running
 5    stray-9999    running
"""


def test_list_vms_left_joins_ledger(db, runner, make_vm):
    make_vm("web", internal_name="web-1111", state="running")
    make_vm("db", internal_name="db-2222", state="running")
    make_vm("gone", internal_name="gone-3333", state="running")
    runner.on("virsh", "list", "--all", output=LIST_ALL)

    vms = StateReconciler(db, runner).list_vms()

    by_name = {v["name"]: v for v in vms}
    assert sorted(by_name) == ["db", "gone", "web"]
    assert by_name["web"]["state"] == "running"
    assert by_name["web"]["live_id"] == "1"
    assert by_name["web"]["status"] == "running"
    assert by_name["db"]["status"] == "stopped"
    assert by_name["gone"]["state"] == "shut off"
    assert by_name["gone"]["live_id"] is None
    assert by_name["gone"]["persisted_state"] == "running"
    # domains with no ledger row are not reported
    assert all(v["internal_name"] != "stray-9999" for v in vms)


def test_list_vms_only_running(db, runner, make_vm):
    make_vm("web", internal_name="web-1111")
    make_vm("db", internal_name="db-2222", state="shut off")
    runner.on("virsh", "list", output=LIST_RUNNING)

    vms = StateReconciler(db, runner).list_vms(only_running=True)

    assert runner.commands == [["virsh", "list"]]
    assert [v["name"] for v in vms] == ["web"]


def test_list_vms_empty_ledger(db, runner):
    runner.on("virsh", "list", "--all", output=LIST_ALL)
    assert StateReconciler(db, runner).list_vms() == []


def test_sync_states_overwrites_transitional_state(db, runner, make_vm):
    make_vm("web", internal_name="web-1111", state="running")
    make_vm("db", internal_name="db-2222", state="shutting-down")
    make_vm("gone", internal_name="gone-3333", state="running")
    runner.on("virsh", "list", "--all", output=LIST_ALL)
    reconciler = StateReconciler(db, runner)

    assert reconciler.sync_states() == 2

    db.expire_all()
    states = {vm.name: vm.state for vm in db.query(models.VM).all()}
    assert states == {"web": "running", "db": "shut off", "gone": "shut off"}
    assert reconciler.sync_states() == 0


def test_cleanup_removes_only_unreferenced_disks(db, runner, make_vm):
    make_vm("web", internal_name="web-1111", disk_path="/images/web-1111.qcow2")
    runner.on("find", output=(
        "/images/web-1111.qcow2\n"
        "/images/old-0001.qcow2\n"
        "/images/old-0002.qcow2\n"
    ))

    removed = StateReconciler(db, runner, disk_dir="/images").cleanup_unused_disks()

    assert removed == ["/images/old-0001.qcow2", "/images/old-0002.qcow2"]
    find = runner.calls[0]
    assert find["command"][:2] == ["find", "/images"]
    assert find["allow_escalation"] is True
    rm_calls = runner.calls_for("rm")
    assert [c["command"][-1] for c in rm_calls] == removed
    assert all(c["allow_escalation"] for c in rm_calls)


def test_cleanup_continues_after_failed_removal(db, runner):
    runner.on("find", output="/images/a.qcow2\n/images/b.qcow2\n")
    runner.fail("rm", "-f", "/images/a.qcow2", stderr="rm: cannot remove '/images/a.qcow2': Device busy")

    removed = StateReconciler(db, runner, disk_dir="/images").cleanup_unused_disks()

    assert removed == ["/images/b.qcow2"]
    assert len(runner.calls_for("rm")) == 2


def test_cleanup_with_empty_directory(db, runner):
    runner.on("find", output="")
    assert StateReconciler(db, runner, disk_dir="/images").cleanup_unused_disks() == []
    assert runner.calls_for("rm") == []


def test_cleanup_keeps_disk_of_defined_domain(db, runner):
    # domain exists on the hypervisor but its ledger row was never written
    runner.on("find", output="/images/orphan-abcd.qcow2\n/images/old-0001.qcow2\n")
    runner.on("virsh", "list", "--all", output=(
        " Id   Name          State\n"
        "----------------------------------\n"
        " 3    orphan-abcd   running\n"
    ))

    removed = StateReconciler(db, runner, disk_dir="/images").cleanup_unused_disks()

    assert removed == ["/images/old-0001.qcow2"]
    assert [c["command"][-1] for c in runner.calls_for("rm")] == ["/images/old-0001.qcow2"]


def test_cleanup_skips_locked_names(db, runner):
    runner.on("find", output="/images/old-0001.qcow2\n/images/old-0002.qcow2\n")

    with name_lock("vm:old-0001"):
        removed = StateReconciler(db, runner, disk_dir="/images").cleanup_unused_disks()

    assert removed == ["/images/old-0002.qcow2"]


def test_cleanup_during_provision_keeps_new_disk(db, session_factory, runner, vm_type):
    sweep_runner = type(runner)()
    swept = []
    run = runner.run

    def run_with_sweep(command, allow_escalation=False, timeout=None):
        if command[0] == "virt-install":
            # disk exists, install not finished, no ledger row yet
            disk = runner.calls_for("qemu-img")[0]["command"][4]
            sweep_runner.on("find", output=disk + "\n")
            sweep_db = session_factory()
            try:
                swept.extend(StateReconciler(sweep_db, sweep_runner, disk_dir="/images").cleanup_unused_disks())
            finally:
                sweep_db.close()
        return run(command, allow_escalation, timeout)

    runner.run = run_with_sweep
    spec = VMSpec(name="web-01", memory=1024, vcpus=1, storage=10, os_type=vm_type.os_type,
                  iso_path=vm_type.iso_path, vm_type_id=vm_type.id)

    vm = VMProvisioner(db, runner, disk_dir="/images").provision(spec)

    assert swept == []
    assert sweep_runner.calls_for("rm") == []
    assert sweep_runner.calls_for("find")
    assert vm.disk_path == runner.calls_for("qemu-img")[0]["command"][4]


def test_sync_rechecks_state_under_lock(db, session_factory, runner, make_vm):
    vm = make_vm("web", internal_name="web-1111", state="shutting-down")
    runner.on("virsh", "list", "--all", output=" Id   Name   State\n---------\n -    web-1111   shut off\n")
    runner.on("virsh", "domstate", "web-1111", output="running\n\n")
    run = runner.run

    def run_then_start(command, allow_escalation=False, timeout=None):
        out = run(command, allow_escalation, timeout)
        if command[:3] == ["virsh", "list", "--all"]:
            # user starts the VM between the listing and the write
            other = session_factory()
            try:
                LifecycleController(other, type(runner)()).start("web")
            finally:
                other.close()
        return out

    runner.run = run_then_start

    assert StateReconciler(db, runner).sync_states() == 0

    db.expire_all()
    assert vm.state == "running"
    assert runner.calls_for("virsh", "domstate", "web-1111")


def test_sync_leaves_agreeing_rows_alone(db, runner, make_vm):
    make_vm("web", internal_name="web-1111", state="running")
    runner.on("virsh", "list", "--all", output=" Id   Name   State\n---------\n 1    web-1111   running\n")

    # listing agrees with the ledger, nothing to re-check
    assert StateReconciler(db, runner).sync_states() == 0
    assert runner.calls_for("virsh", "domstate") == []


def test_sync_skips_rows_when_domstate_fails(db, runner, make_vm):
    make_vm("db", internal_name="db-2222", state="running")
    runner.on("virsh", "list", "--all", output=LIST_ALL)
    runner.fail("virsh", "domstate", stderr="error: failed to get domain 'db-2222'")

    assert StateReconciler(db, runner).sync_states() == 0
    db.expire_all()
    assert db.query(models.VM).one().state == "running"


def test_sync_skips_busy_vm(db, runner, make_vm):
    make_vm("web", internal_name="web-1111", state="shutting-down")
    make_vm("db", internal_name="db-2222", state="shutting-down")
    runner.on("virsh", "list", "--all", output=LIST_ALL)
    runner.on("virsh", "domstate", "web-1111", output="running\n")

    with name_lock("vm:db-2222"):
        assert StateReconciler(db, runner).sync_states() == 1

    db.expire_all()
    states = {vm.name: vm.state for vm in db.query(models.VM).all()}
    assert states == {"web": "running", "db": "shutting-down"}
