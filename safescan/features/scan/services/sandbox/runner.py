"""
Isolated execution backends.

A ``SandboxRunner`` launches one isolated unit per job, races it against a
wall-clock timeout and always tears it down. Backends only supply ``launch``
and a ``SandboxHandle``; the race, log capture and cleanup live here so every
backend behaves the same way.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from safescan.features.scan.services.sandbox.logs import demux_log_stream
from safescan.platform.logger import get_logger

logger = get_logger(__name__)


class SandboxRunnerError(Exception):
    """Infrastructure failure launching or managing a unit."""


class SandboxTimeout(Exception):
    """The unit did not finish within the wall-clock limit."""


class SandboxGone(Exception):
    """The unit was already removed when we tried to talk to it."""


@dataclass(frozen=True)
class SandboxLimits:
    timeout_ms: int = 30000
    memory_mb: int = 512
    cpu_limit: float = 0.5
    network_mode: str = "bridge"

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class SandboxUnit:
    job_id: str
    url: str
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RunOutput:
    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    unit_id: Optional[str] = None


class SandboxHandle(ABC):
    unit_id: str = ""

    @abstractmethod
    def wait(self, timeout_seconds: float) -> int:
        """Block until the unit exits and return its exit code; raise SandboxTimeout."""

    @abstractmethod
    def logs(self) -> bytes:
        """Combined output, possibly multiplexed; raise SandboxGone if the unit is gone."""

    @abstractmethod
    def kill(self) -> None:
        """Forcibly stop the unit."""

    @abstractmethod
    def remove(self) -> None:
        """Release the unit and anything attached to it. Safe to call more than once."""


class SandboxRunner(ABC):
    @abstractmethod
    def launch(self, unit: SandboxUnit, limits: SandboxLimits) -> SandboxHandle:
        """Create and start an isolated unit; raise SandboxRunnerError on failure."""

    def _collect_logs(self, handle: SandboxHandle, job_id: str) -> bytes:
        try:
            return handle.logs()
        except SandboxGone:
            logger.warning(f"[{job_id}] Could not retrieve logs: unit {handle.unit_id} was already removed")
            return b""

    def run(self, unit: SandboxUnit, limits: SandboxLimits) -> RunOutput:
        """Run one unit to completion or timeout and return its demultiplexed output."""
        handle = self.launch(unit, limits)
        try:
            try:
                exit_code = handle.wait(limits.timeout_seconds)
            except SandboxGone as e:
                raise SandboxRunnerError(f"Unit {handle.unit_id} disappeared while running: {e}") from e
            except SandboxTimeout:
                logger.warning(
                    f"[{unit.job_id}] Unit {handle.unit_id} exceeded {limits.timeout_ms}ms, killing it"
                )
                logs = self._collect_logs(handle, unit.job_id)
                try:
                    handle.kill()
                except SandboxGone:
                    pass
                stdout, stderr = demux_log_stream(logs)
                return RunOutput(
                    exit_code=None, stdout=stdout, stderr=stderr, timed_out=True, unit_id=handle.unit_id
                )

            logs = self._collect_logs(handle, unit.job_id)
            stdout, stderr = demux_log_stream(logs)
            return RunOutput(exit_code=exit_code, stdout=stdout, stderr=stderr, unit_id=handle.unit_id)
        finally:
            try:
                handle.remove()
            except SandboxGone:
                pass
            except SandboxRunnerError as e:
                logger.warning(f"[{unit.job_id}] Unit {handle.unit_id} removal warning: {e}")
