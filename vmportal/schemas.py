# vmportal/schemas.py
from typing import Optional

from pydantic import BaseModel, Field


class VMTypeIn(BaseModel):
    # name/os_type are checked by the catalog so the caller gets a 400 envelope
    name: Optional[str] = None
    os_type: Optional[str] = None
    iso_path: Optional[str] = None
    description: Optional[str] = None


class VMSpec(BaseModel):
    name: str = Field(..., min_length=1, description="Unique display name")
    memory: int = Field(1024, ge=1, description="RAM in MB")
    vcpus: int = Field(1, ge=1)
    storage: int = Field(10, ge=1, description="Disk size in GB")
    os_type: str
    iso_path: str = Field(..., min_length=1, description="Install media path on the hypervisor host")
    vm_type_id: str
    user_id: Optional[str] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None


class VMUpdate(BaseModel):
    description: Optional[str] = None
    ip_address: Optional[str] = None
    user_id: Optional[str] = None


class VMRequestCreate(BaseModel):
    user_id: Optional[str] = None
    username: Optional[str] = None
    purpose: Optional[str] = None
    course: Optional[str] = None
    duration: Optional[str] = None
    description: Optional[str] = None
    memory: Optional[int] = Field(None, ge=1)
    vcpus: Optional[int] = Field(None, ge=1)
    storage: Optional[int] = Field(None, ge=1)
    os_type: Optional[str] = None
    vm_type_id: Optional[str] = None


class ApproveOverride(BaseModel):
    """Administrator overrides applied on top of the request's own fields."""

    name: Optional[str] = None
    memory: Optional[int] = Field(None, ge=1)
    vcpus: Optional[int] = Field(None, ge=1)
    storage: Optional[int] = Field(None, ge=1)
    os_type: Optional[str] = None
    iso_path: Optional[str] = None
    vm_type_id: Optional[str] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None
    message: Optional[str] = None


class RejectBody(BaseModel):
    reason: Optional[str] = None
