# vmportal/hypervisor/runner.py
import logging
import shlex
import subprocess
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import paramiko

from vmportal.config import settings
from vmportal.errors import ExecutionError

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MARKERS = (
    "permission denied",
    "operation not permitted",
    "eacces",
)


def looks_like_permission_denied(stderr: str) -> bool:
    lowered = (stderr or "").lower()
    return any(marker in lowered for marker in PERMISSION_DENIED_MARKERS)


def first_error_line(stderr: str) -> str:
    for raw_line in (stderr or "").splitlines():
        line = raw_line.strip()
        if line:
            return line
    return "unknown error"


class LocalTransport:
    """Runs commands on this machine. Returns (rc, stdout, stderr)."""

    def execute(self, command: Sequence[str], timeout: int) -> Tuple[int, str, str]:
        try:
            proc = subprocess.run(
                list(command),
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(command, f"timed out after {timeout}s")
        except OSError as e:
            # binary missing or not executable
            raise ExecutionError(command, str(e))
        return proc.returncode, proc.stdout.strip(), proc.stderr.strip()


class SSHTransport:
    """
    Runs commands on the hypervisor host over SSH. The argument list is
    quoted with shlex so the remote shell sees the same argv.
    """

    def __init__(self, host: str, user: str = "root", port: int = 22,
                 password: Optional[str] = None, key_filename: Optional[str] = None,
                 connect_timeout: int = 10):
        self.host = host
        self.user = user
        self.port = port
        self.password = password
        self.key_filename = key_filename
        self.connect_timeout = connect_timeout

    def execute(self, command: Sequence[str], timeout: int) -> Tuple[int, str, str]:
        remote_cmd = shlex.join(list(command))
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                key_filename=self.key_filename,
                timeout=self.connect_timeout,
            )
            stdin, stdout, stderr = client.exec_command(remote_cmd, timeout=timeout)
            output = stdout.read().decode(errors="ignore").strip()
            err = stderr.read().decode(errors="ignore").strip()
            retcode = stdout.channel.recv_exit_status()
            return retcode, output, err
        except (paramiko.SSHException, OSError) as e:
            # socket.timeout is an OSError
            raise ExecutionError(command, f"ssh {self.user}@{self.host}: {e}")
        finally:
            client.close()


class CommandRunner:
    """
    Executes hypervisor CLI invocations.

    A failed command is retried exactly once behind the escalation prefix
    (``sudo -n`` by default) when all of these hold:

      - the failure looks like a permission denial,
      - the call site passed ``allow_escalation=True``,
      - the command is not already escalated.

    Everything else raises ExecutionError with the original stderr.
    """

    def __init__(self, transport=None, escalation_prefix: Optional[Sequence[str]] = None,
                 default_timeout: Optional[int] = None):
        self.transport = transport or LocalTransport()
        if escalation_prefix is None:
            escalation_prefix = shlex.split(settings.escalation_prefix)
        self.escalation_prefix: List[str] = list(escalation_prefix)
        self.default_timeout = default_timeout or settings.command_timeout

    def is_escalated(self, command: Sequence[str]) -> bool:
        n = len(self.escalation_prefix)
        return n > 0 and list(command[:n]) == self.escalation_prefix

    def _execute(self, command: List[str], timeout: int) -> Tuple[int, str, str]:
        logger.debug("exec: %s", " ".join(command))
        return self.transport.execute(command, timeout)

    def run(self, command: Sequence[str], allow_escalation: bool = False,
            timeout: Optional[int] = None) -> str:
        command = list(command)
        timeout = timeout or self.default_timeout

        rc, out, err = self._execute(command, timeout)
        if rc == 0:
            return out

        if allow_escalation and not self.is_escalated(command) and looks_like_permission_denied(err):
            escalated = self.escalation_prefix + command
            logger.info("Permission denied for %s, retrying with %s", command[0], " ".join(self.escalation_prefix))
            rc, out, err = self._execute(escalated, timeout)
            if rc == 0:
                return out
            command = escalated

        logger.warning("Command failed rc=%s: %s (%s)", rc, " ".join(command), first_error_line(err))
        raise ExecutionError(command, err or out, returncode=rc)


def build_transport():
    if settings.hypervisor_ssh_host:
        return SSHTransport(
            settings.hypervisor_ssh_host,
            user=settings.hypervisor_ssh_user,
            port=settings.hypervisor_ssh_port,
            password=settings.hypervisor_ssh_password,
            key_filename=settings.hypervisor_ssh_key,
        )
    return LocalTransport()


@lru_cache(maxsize=1)
def get_runner() -> CommandRunner:
    """Process-wide runner; FastAPI routes depend on this so tests can override it."""
    return CommandRunner(transport=build_transport())
