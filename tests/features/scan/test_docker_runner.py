import json
from unittest.mock import MagicMock

import pytest
import requests
import urllib3
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from safescan.features.scan.services.sandbox.docker_runner import DockerSandboxRunner
from safescan.features.scan.services.sandbox.runner import SandboxLimits, SandboxRunnerError, SandboxUnit

LIMITS = SandboxLimits(timeout_ms=2000, memory_mb=256, cpu_limit=0.5, network_mode="bridge")
UNIT = SandboxUnit(job_id="job-1", url="https://example.com", env={"JOB_ID": "job-1", "SCAN_URL": "https://example.com"})


def _conflict():
    return APIError("container is not running", response=MagicMock(status_code=409, reason="Conflict", url="/kill"))


@pytest.fixture
def container():
    container = MagicMock()
    container.short_id = "abc123"
    container.wait.return_value = {"StatusCode": 0}
    container.logs.side_effect = lambda stdout, stderr, timestamps: (
        json.dumps({"jobId": "job-1", "success": True}).encode() if stdout else b"fetching\n"
    )
    return container


@pytest.fixture
def client(container):
    client = MagicMock()
    client.containers.create.return_value = container
    return client


def test_container_gets_the_resource_limits(client, container):
    DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    args, kwargs = client.containers.create.call_args
    assert args == ("fetcher:latest",)
    assert kwargs["environment"] == {"JOB_ID": "job-1", "SCAN_URL": "https://example.com"}
    assert kwargs["mem_limit"] == "256m"
    assert kwargs["cpu_quota"] == 50000
    assert kwargs["cpu_period"] == 100000
    assert kwargs["network_mode"] == "bridge"
    assert kwargs["auto_remove"] is False
    assert "ports" not in kwargs
    container.start.assert_called_once()


def test_streams_stay_apart_and_the_container_is_removed(client, container):
    output = DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    assert output.exit_code == 0
    assert json.loads(output.stdout) == {"jobId": "job-1", "success": True}
    assert output.stderr == "fetching\n"
    assert output.unit_id == "abc123"
    container.remove.assert_called_once_with(force=True)


def test_missing_image_is_pulled(client):
    client.images.get.side_effect = ImageNotFound("no such image")

    DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    client.images.pull.assert_called_once_with("fetcher:latest")


def test_wait_timeout_kills_the_container(client, container):
    container.wait.side_effect = requests.exceptions.ReadTimeout("read timed out")
    container.kill.side_effect = _conflict()

    output = DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    assert output.timed_out is True
    assert output.exit_code is None
    container.kill.assert_called_once()
    container.remove.assert_called_once_with(force=True)


def test_removed_container_still_yields_an_exit_code(client, container):
    container.logs.side_effect = NotFound("No such container: abc123")
    container.remove.side_effect = NotFound("No such container: abc123")

    output = DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    assert output.exit_code == 0
    assert output.stdout == ""


def test_start_failure_cleans_up(client, container):
    container.start.side_effect = DockerException("cannot start")

    with pytest.raises(SandboxRunnerError):
        DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    container.remove.assert_called_once_with(force=True)


def test_container_vanishing_during_wait_is_an_infrastructure_error(client, container):
    container.wait.side_effect = NotFound("No such container: abc123")

    with pytest.raises(SandboxRunnerError):
        DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    container.remove.assert_called_once_with(force=True)


def test_wrapped_read_timeout_counts_as_a_timeout(client, container):
    container.wait.side_effect = requests.exceptions.ConnectionError(
        urllib3.exceptions.ReadTimeoutError(None, "/containers/abc123/wait", "Read timed out.")
    )

    output = DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    assert output.timed_out is True


def test_lost_daemon_connection_is_not_a_timeout(client, container):
    container.wait.side_effect = requests.exceptions.ConnectionError("Connection aborted: socket closed")

    with pytest.raises(SandboxRunnerError):
        DockerSandboxRunner("fetcher:latest", client=client).run(UNIT, LIMITS)

    container.remove.assert_called_once_with(force=True)
