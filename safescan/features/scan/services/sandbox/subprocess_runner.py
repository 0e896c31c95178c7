"""
Child-process sandbox backend.

Each unit is a fresh process in its own session with an address-space ceiling
and a CPU-time ceiling, started with a minimal environment. Network policy is
not enforceable at this level; deployments that need it use the Docker backend.
"""
import math
import os
import signal
import subprocess
import sys
import tempfile
from typing import List, Optional, Sequence

from safescan.features.scan.services.sandbox.logs import STDERR, STDOUT, mux_frames
from safescan.features.scan.services.sandbox.runner import (
    SandboxGone,
    SandboxHandle,
    SandboxLimits,
    SandboxRunner,
    SandboxRunnerError,
    SandboxTimeout,
    SandboxUnit,
)
from safescan.platform.logger import get_logger

logger = get_logger(__name__)

DEFAULT_COMMAND = (sys.executable, "-m", "safescan.features.fetcher")

# Parent variables a child interpreter needs to start at all.
INHERITED_ENV = ("PATH", "PYTHONPATH", "LANG", "LC_ALL", "SYSTEMROOT")


def _limit_resources(memory_mb: int, cpu_seconds: int):
    def apply():
        import resource

        memory_bytes = memory_mb * 1024 * 1024
        resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
        resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))

    return apply


class SubprocessHandle(SandboxHandle):
    def __init__(self, process: subprocess.Popen, stdout_file, stderr_file):
        self._process = process
        self._stdout_file = stdout_file
        self._stderr_file = stderr_file
        self._removed = False
        self.unit_id = f"pid-{process.pid}"

    def wait(self, timeout_seconds: float) -> int:
        try:
            return self._process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as e:
            raise SandboxTimeout(str(e)) from e

    def logs(self) -> bytes:
        if self._removed:
            raise SandboxGone(f"unit {self.unit_id} has been removed")
        self._stdout_file.seek(0)
        self._stderr_file.seek(0)
        return mux_frames([(STDOUT, self._stdout_file.read()), (STDERR, self._stderr_file.read())])

    def kill(self) -> None:
        if self._process.poll() is not None:
            return
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError:
            self._process.kill()
        try:
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired as e:
            raise SandboxRunnerError(f"unit {self.unit_id} did not die after SIGKILL") from e

    def remove(self) -> None:
        if self._removed:
            return
        try:
            self.kill()
        finally:
            self._removed = True
            self._stdout_file.close()
            self._stderr_file.close()


class SubprocessSandboxRunner(SandboxRunner):
    def __init__(self, command: Optional[Sequence[str]] = None, cwd: Optional[str] = None):
        self.command: List[str] = list(command or DEFAULT_COMMAND)
        self.cwd = cwd

    def _environment(self, unit: SandboxUnit) -> dict:
        env = {key: os.environ[key] for key in INHERITED_ENV if key in os.environ}
        env.update({"PYTHONUNBUFFERED": "1", "PYTHONIOENCODING": "utf-8"})
        env.update(unit.env)
        return env

    def launch(self, unit: SandboxUnit, limits: SandboxLimits) -> SandboxHandle:
        stdout_file = tempfile.TemporaryFile()
        stderr_file = tempfile.TemporaryFile()
        cpu_seconds = max(1, math.ceil(limits.timeout_seconds)) + 1
        preexec = _limit_resources(limits.memory_mb, cpu_seconds) if os.name == "posix" else None

        try:
            process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=stdout_file,
                stderr=stderr_file,
                env=self._environment(unit),
                cwd=self.cwd,
                start_new_session=True,
                preexec_fn=preexec,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            stdout_file.close()
            stderr_file.close()
            raise SandboxRunnerError(f"Failed to start sandbox process: {e}") from e

        logger.info(f"[{unit.job_id}] Started sandbox process {process.pid}")
        return SubprocessHandle(process, stdout_file, stderr_file)
