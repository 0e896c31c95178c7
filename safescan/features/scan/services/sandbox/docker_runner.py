"""
Container sandbox backend.

One ephemeral container per job with a memory ceiling, a CPU quota and a
network mode; no ports are published. Containers are created with
auto-remove disabled so logs can still be read after exit, then removed
explicitly.
"""
from typing import Optional

import docker
import requests
import urllib3
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

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

CPU_PERIOD_US = 100000


def _is_read_timeout(error: requests.exceptions.RequestException) -> bool:
    """docker-py surfaces a wait timeout either as ReadTimeout or as a ConnectionError wrapping one."""
    if isinstance(error, requests.exceptions.ReadTimeout):
        return True
    return any(isinstance(arg, urllib3.exceptions.ReadTimeoutError) for arg in error.args)


def _already_gone(error: APIError) -> bool:
    message = str(error).lower()
    return (
        error.status_code in (404, 409)
        or "no such container" in message
        or "dead" in message
        or "removal" in message
    )


class DockerHandle(SandboxHandle):
    def __init__(self, container):
        self._container = container
        self.unit_id = container.short_id

    def wait(self, timeout_seconds: float) -> int:
        try:
            result = self._container.wait(timeout=timeout_seconds)
        except (requests.exceptions.ReadTimeout, requests.exceptions.ConnectionError) as e:
            if _is_read_timeout(e):
                raise SandboxTimeout(str(e)) from e
            raise SandboxRunnerError(f"Lost the Docker daemon while waiting on container {self.unit_id}: {e}") from e
        except NotFound as e:
            raise SandboxGone(str(e)) from e
        except DockerException as e:
            raise SandboxRunnerError(f"Waiting on container {self.unit_id} failed: {e}") from e
        return int(result.get("StatusCode", 0) or 0)

    def logs(self) -> bytes:
        # Fetched per stream and re-framed so stdout and stderr stay apart.
        try:
            stdout = self._container.logs(stdout=True, stderr=False, timestamps=False)
            stderr = self._container.logs(stdout=False, stderr=True, timestamps=False)
        except NotFound as e:
            raise SandboxGone(str(e)) from e
        except APIError as e:
            if _already_gone(e):
                raise SandboxGone(str(e)) from e
            raise SandboxRunnerError(f"Reading logs of container {self.unit_id} failed: {e}") from e
        return mux_frames([(STDOUT, stdout or b""), (STDERR, stderr or b"")])

    def kill(self) -> None:
        try:
            self._container.kill()
        except NotFound as e:
            raise SandboxGone(str(e)) from e
        except APIError as e:
            if e.status_code == 409:
                # not running any more
                return
            logger.error(f"Failed to kill timed-out container {self.unit_id}: {e}")
            raise SandboxRunnerError(str(e)) from e

    def remove(self) -> None:
        try:
            self._container.remove(force=True)
        except NotFound:
            return
        except APIError as e:
            if _already_gone(e):
                return
            raise SandboxRunnerError(f"Removing container {self.unit_id} failed: {e}") from e


class DockerSandboxRunner(SandboxRunner):
    def __init__(self, image: str, socket_path: str = "/var/run/docker.sock", client=None):
        self.image = image
        self.socket_path = socket_path
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.DockerClient(base_url=f"unix://{self.socket_path}")
            except DockerException as e:
                raise SandboxRunnerError(f"Cannot connect to Docker at {self.socket_path}: {e}") from e
        return self._client

    def _ensure_image(self) -> None:
        try:
            self.client.images.get(self.image)
        except ImageNotFound:
            logger.info(f"Pulling fetcher image: {self.image}")
            self.client.images.pull(self.image)

    def launch(self, unit: SandboxUnit, limits: SandboxLimits) -> SandboxHandle:
        container: Optional[object] = None
        try:
            self._ensure_image()
            container = self.client.containers.create(
                self.image,
                environment=dict(unit.env),
                mem_limit=f"{limits.memory_mb}m",
                cpu_period=CPU_PERIOD_US,
                cpu_quota=int(limits.cpu_limit * CPU_PERIOD_US),
                network_mode=limits.network_mode,
                auto_remove=False,
                tty=False,
                stdin_open=False,
                labels={"safescan.job_id": unit.job_id},
            )
            container.start()
        except DockerException as e:
            if container is not None:
                DockerHandle(container).remove()
            raise SandboxRunnerError(f"Docker operation failed: {e}") from e

        logger.info(f"[{unit.job_id}] Started container {container.short_id} from {self.image}")
        return DockerHandle(container)
