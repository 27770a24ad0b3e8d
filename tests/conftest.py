# tests/conftest.py
import os

# must be set before vmportal.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOCK_BACKEND", "local")
os.environ.setdefault("LOCK_WAIT_SECONDS", "1")
os.environ.setdefault("DISK_DIR", "/images")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vmportal import models
from vmportal.db import Base, get_db
from vmportal.errors import ExecutionError
from vmportal.hypervisor.runner import get_runner


class FakeRunner:
    """
    Stands in for CommandRunner. Rules are matched by command prefix, the
    first matching rule wins; unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls = []
        self.rules = []

    def on(self, *prefix, output=""):
        self.rules.append((list(prefix), output, None))
        return self

    def fail(self, *prefix, stderr="error: command failed", exc=None):
        error = exc or ExecutionError(list(prefix), stderr, returncode=1)
        self.rules.append((list(prefix), "", error))
        return self

    def run(self, command, allow_escalation=False, timeout=None):
        command = list(command)
        self.calls.append({"command": command, "allow_escalation": allow_escalation, "timeout": timeout})
        for prefix, output, error in self.rules:
            if command[:len(prefix)] == prefix:
                if error is not None:
                    raise error
                return output
        return ""

    @property
    def commands(self):
        return [c["command"] for c in self.calls]

    def calls_for(self, *prefix):
        prefix = list(prefix)
        return [c for c in self.calls if c["command"][:len(prefix)] == prefix]


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def client(session_factory, runner):
    from vmportal.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_runner] = lambda: runner
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    u = models.User(email="student@example.edu", name="Student One", role="student")
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def vm_type(db):
    t = models.VMType(name="Ubuntu 22.04", os_type="linux", iso_path="/isos/ubuntu-22.04.iso",
                      description="Ubuntu server")
    db.add(t)
    db.commit()
    db.refresh(t)
    return t


@pytest.fixture
def make_vm(db, vm_type):
    def _make(name="web", internal_name=None, state="running", disk_path=None, **kwargs):
        internal_name = internal_name or f"{name}-0000"
        vm = models.VM(
            name=name,
            internal_name=internal_name,
            state=state,
            os_type=vm_type.os_type,
            disk_path=disk_path or f"/images/{internal_name}.qcow2",
            memory=kwargs.pop("memory", 1024),
            vcpus=kwargs.pop("vcpus", 1),
            storage=kwargs.pop("storage", 10),
            vm_type_id=kwargs.pop("vm_type_id", vm_type.id),
            **kwargs,
        )
        db.add(vm)
        db.commit()
        db.refresh(vm)
        return vm

    return _make
