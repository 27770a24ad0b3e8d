# tests/test_workflow.py
import pytest

from vmportal import models
from vmportal.errors import AlreadyProcessedError, ExecutionError, InvalidSpecError, NotFoundError
from vmportal.schemas import ApproveOverride, VMRequestCreate
from vmportal.workflow import RequestWorkflow


@pytest.fixture
def workflow(db, runner):
    return RequestWorkflow(db, runner)


@pytest.fixture
def pending(workflow, user, vm_type):
    return workflow.submit_request(VMRequestCreate(
        user_id=user.id,
        username="student1",
        purpose="Distributed systems lab",
        course="CS-451",
        memory=2048,
        vcpus=2,
        storage=20,
        vm_type_id=vm_type.id,
    ))


# ----------------------------
# submission
# ----------------------------
def test_submit_fills_os_type_from_vm_type(pending, vm_type):
    assert pending.status == "pending"
    assert pending.os_type == vm_type.os_type
    assert pending.vm_id is None


@pytest.mark.parametrize("fields,message", [
    ({"purpose": None}, "Purpose is required"),
    ({"purpose": "   "}, "Purpose is required"),
    ({"user_id": None}, "requesting user"),
    ({"vm_type_id": "missing"}, "does not exist"),
    ({"os_type": "windows"}, "does not match"),
])
def test_submit_validation(workflow, user, vm_type, fields, message):
    payload = {"user_id": user.id, "purpose": "lab", "vm_type_id": vm_type.id}
    payload.update(fields)
    with pytest.raises(InvalidSpecError, match=message):
        workflow.submit_request(VMRequestCreate(**payload))


def test_submit_unknown_user(workflow, db):
    with pytest.raises(InvalidSpecError, match="Unknown user"):
        workflow.submit_request(VMRequestCreate(user_id="nobody", purpose="lab"))
    assert db.query(models.VMRequest).count() == 0


def test_submit_without_vm_type(workflow, user):
    req = workflow.submit_request(VMRequestCreate(user_id=user.id, purpose="lab", os_type="linux"))
    assert req.vm_type_id is None
    assert req.os_type == "linux"


def test_list_and_get_requests(workflow, db, user, pending):
    other = models.User(email="other@example.edu", name="Other")
    db.add(other)
    db.commit()
    workflow.submit_request(VMRequestCreate(user_id=other.id, purpose="ml project"))

    assert len(workflow.list_requests()) == 2
    assert [r.id for r in workflow.list_requests(user_id=user.id)] == [pending.id]
    assert workflow.get_request(pending.id).purpose == "Distributed systems lab"
    with pytest.raises(NotFoundError):
        workflow.get_request("missing")


# ----------------------------
# approval
# ----------------------------
def test_approve_without_override(workflow, db, pending, vm_type):
    req, vm = workflow.approve(pending.id)

    assert (vm.memory, vm.vcpus, vm.storage) == (2048, 2, 20)
    assert vm.os_type == vm_type.os_type
    assert vm.name == f"vm-{pending.id[:8]}"
    assert vm.description == "VM created for Distributed systems lab - Course: CS-451"
    assert vm.user_id == pending.user_id
    assert req.status == "approved"
    assert req.vm_id == vm.id
    assert req.response_message == "Your VM request has been approved."
    install = workflow.runner.calls_for("virt-install")[0]["command"]
    assert install[install.index("--cdrom") + 1] == vm_type.iso_path


def test_approve_applies_defaults(workflow, user, vm_type):
    req = workflow.submit_request(VMRequestCreate(user_id=user.id, purpose="lab", vm_type_id=vm_type.id))

    _, vm = workflow.approve(req.id)

    assert (vm.memory, vm.vcpus, vm.storage) == (1024, 1, 10)
    assert vm.description == "VM created for lab"


def test_override_wins_field_by_field(workflow, pending):
    req, vm = workflow.approve(pending.id, ApproveOverride(
        name="dslab-01", memory=4096, ip_address="10.1.0.20", message="Enjoy.",
    ))

    assert vm.name == "dslab-01"
    assert vm.memory == 4096
    assert vm.vcpus == 2
    assert vm.ip_address == "10.1.0.20"
    assert req.response_message == "Enjoy."


def test_override_vm_type_takes_its_os_and_media(workflow, db, pending):
    win = models.VMType(name="Windows 10", os_type="windows", iso_path="/isos/win10.iso")
    db.add(win)
    db.commit()

    _, vm = workflow.approve(pending.id, ApproveOverride(vm_type_id=win.id))

    assert vm.vm_type_id == win.id
    assert vm.os_type == "windows"


def test_approve_requires_vm_type(workflow, user):
    req = workflow.submit_request(VMRequestCreate(user_id=user.id, purpose="lab"))
    with pytest.raises(InvalidSpecError, match="VM type is required"):
        workflow.approve(req.id)
    assert workflow.get_request(req.id).status == "pending"


def test_approve_type_without_install_media(workflow, db, runner, user):
    bare = models.VMType(name="Blank", os_type="linux", iso_path=None)
    db.add(bare)
    db.commit()
    req = workflow.submit_request(VMRequestCreate(user_id=user.id, purpose="lab", vm_type_id=bare.id))

    with pytest.raises(InvalidSpecError, match="no install media"):
        workflow.approve(req.id)

    assert runner.calls == []
    assert workflow.get_request(req.id).status == "pending"


def test_approve_reserved_name_override(workflow, runner, pending):
    with pytest.raises(InvalidSpecError, match="reserved"):
        workflow.approve(pending.id, ApproveOverride(name="list"))
    assert runner.calls == []
    assert workflow.get_request(pending.id).status == "pending"


def test_approve_processed_request_is_refused(workflow, db, runner, pending):
    workflow.reject(pending.id, "no capacity")
    runner.calls.clear()

    with pytest.raises(AlreadyProcessedError, match="already been rejected"):
        workflow.approve(pending.id)

    assert runner.calls == []
    assert db.query(models.VM).count() == 0
    req = workflow.get_request(pending.id)
    assert (req.status, req.response_message, req.vm_id) == ("rejected", "no capacity", None)


def test_failed_provisioning_leaves_request_pending(workflow, db, runner, pending):
    runner.fail("qemu-img", stderr="qemu-img: Permission denied")

    with pytest.raises(ExecutionError):
        workflow.approve(pending.id)

    db.expire_all()
    req = workflow.get_request(pending.id)
    assert req.status == "pending"
    assert req.vm_id is None
    assert req.response_message is None


def test_concurrent_decision_loses_status_race(workflow, db, pending):
    provision = workflow.provisioner.provision

    def provision_then_reject_elsewhere(spec):
        vm = provision(spec)
        db.query(models.VMRequest).filter(models.VMRequest.id == pending.id).update(
            {"status": "rejected"}, synchronize_session=False,
        )
        db.commit()
        return vm

    workflow.provisioner.provision = provision_then_reject_elsewhere

    with pytest.raises(AlreadyProcessedError):
        workflow.approve(pending.id)

    req = workflow.get_request(pending.id)
    assert req.status == "rejected"
    assert req.vm_id is None


# ----------------------------
# rejection
# ----------------------------
def test_reject_with_reason(workflow, db, pending):
    req = workflow.reject(pending.id, "insufficient quota")

    assert req.status == "rejected"
    assert req.response_message == "insufficient quota"
    assert req.vm_id is None
    assert db.query(models.VM).count() == 0


def test_reject_default_message(workflow, pending):
    req = workflow.reject(pending.id)
    assert req.response_message == "Your VM request has been rejected."


def test_reject_twice(workflow, pending):
    workflow.reject(pending.id)
    with pytest.raises(AlreadyProcessedError):
        workflow.reject(pending.id, "again")


def test_reject_missing_request(workflow):
    with pytest.raises(NotFoundError):
        workflow.reject("missing")
