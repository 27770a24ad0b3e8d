# vmportal/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from vmportal.db import Base

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"


def _uuid_str() -> str:
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    """Read-only view of the identity subsystem's users table."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="student")


class VMType(Base):
    __tablename__ = "vm_types"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, unique=True, nullable=False)
    os_type = Column(String, nullable=False)
    iso_path = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "os_type": self.os_type,
            "iso_path": self.iso_path,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class VM(Base):
    __tablename__ = "vms"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, unique=True, nullable=False)
    internal_name = Column(String, unique=True, nullable=False, index=True)
    state = Column(String, nullable=False, default="creating")
    os_type = Column(String, nullable=True)
    disk_path = Column(String, unique=True, nullable=False)

    memory = Column(Integer, nullable=False)   # MB
    vcpus = Column(Integer, nullable=False)
    storage = Column(Integer, nullable=False)  # GB

    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    vm_type_id = Column(String(36), ForeignKey("vm_types.id"), nullable=True)
    ip_address = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    vm_type = relationship("VMType")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "internal_name": self.internal_name,
            "state": self.state,
            "os_type": self.os_type,
            "disk_path": self.disk_path,
            "memory": self.memory,
            "vcpus": self.vcpus,
            "storage": self.storage,
            "user_id": self.user_id,
            "vm_type_id": self.vm_type_id,
            "ip_address": self.ip_address,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class VMRequest(Base):
    __tablename__ = "vm_requests"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    username = Column(String, nullable=True)

    purpose = Column(String, nullable=False)
    course = Column(String, nullable=True)
    duration = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    memory = Column(Integer, nullable=True)
    vcpus = Column(Integer, nullable=True)
    storage = Column(Integer, nullable=True)
    os_type = Column(String, nullable=True)
    vm_type_id = Column(String(36), ForeignKey("vm_types.id"), nullable=True)

    status = Column(String, nullable=False, default=REQUEST_PENDING, index=True)
    response_message = Column(Text, nullable=True)
    # historical link, survives deletion of the VM
    vm_id = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "purpose": self.purpose,
            "course": self.course,
            "duration": self.duration,
            "description": self.description,
            "memory": self.memory,
            "vcpus": self.vcpus,
            "storage": self.storage,
            "os_type": self.os_type,
            "vm_type_id": self.vm_type_id,
            "status": self.status,
            "response_message": self.response_message,
            "vm_id": self.vm_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
