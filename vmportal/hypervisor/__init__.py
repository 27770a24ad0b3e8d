# vmportal/hypervisor/__init__.py
from .runner import CommandRunner, LocalTransport, SSHTransport, get_runner

__all__ = ["CommandRunner", "LocalTransport", "SSHTransport", "get_runner"]
