# vmportal/api/vm_requests.py
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from vmportal.db import get_db
from vmportal.hypervisor.runner import CommandRunner, get_runner
from vmportal.schemas import ApproveOverride, RejectBody, VMRequestCreate
from vmportal.workflow import RequestWorkflow

router = APIRouter(prefix="/vm-requests", tags=["vm-requests"])


def get_workflow(db: Session = Depends(get_db), runner: CommandRunner = Depends(get_runner)) -> RequestWorkflow:
    return RequestWorkflow(db, runner)


@router.post("")
def submit_request(payload: VMRequestCreate, workflow: RequestWorkflow = Depends(get_workflow)):
    req = workflow.submit_request(payload)
    return {
        "success": True,
        "message": "VM request submitted successfully",
        "request_id": req.id,
        "request": req.to_dict(),
    }


@router.get("")
def list_requests(user_id: Optional[str] = None, workflow: RequestWorkflow = Depends(get_workflow)):
    requests = workflow.list_requests(user_id=user_id)
    return {"success": True, "message": f"{len(requests)} requests", "requests": [r.to_dict() for r in requests]}


@router.get("/{request_id}")
def get_request(request_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    req = workflow.get_request(request_id)
    return {"success": True, "message": "VM request retrieved", "request": req.to_dict()}


@router.post("/{request_id}/approve")
def approve_request(request_id: str, override: Optional[ApproveOverride] = Body(None),
                    workflow: RequestWorkflow = Depends(get_workflow)):
    req, vm = workflow.approve(request_id, override)
    return {
        "success": True,
        "message": req.response_message,
        "request": req.to_dict(),
        "vm": vm.to_dict(),
    }


@router.post("/{request_id}/reject")
def reject_request(request_id: str, body: Optional[RejectBody] = Body(None),
                   workflow: RequestWorkflow = Depends(get_workflow)):
    req = workflow.reject(request_id, body.reason if body else None)
    return {"success": True, "message": req.response_message, "request": req.to_dict()}
