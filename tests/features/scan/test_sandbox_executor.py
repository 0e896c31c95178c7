import json
import sys
import time
from unittest.mock import MagicMock

import pytest

from safescan.features.scan.errors import ScanErrorCode
from safescan.features.scan.services.sandbox.executor import (
    SandboxExecutor,
    extract_last_json_object,
)
from safescan.features.scan.services.sandbox.logs import STDERR, STDOUT, mux_frames
from safescan.features.scan.services.sandbox.runner import (
    RunOutput,
    SandboxGone,
    SandboxHandle,
    SandboxLimits,
    SandboxRunner,
    SandboxRunnerError,
    SandboxTimeout,
    SandboxUnit,
)
from safescan.features.scan.services.sandbox.subprocess_runner import SubprocessSandboxRunner
from tests.fakes import HASH_A, FakeRunner

FETCH_RESULT = {
    "contentHash": HASH_A,
    "httpStatus": 200,
    "httpHeaders": {"content-type": "text/html"},
    "contentType": "text/html",
    "metadata": {"title": "Example Domain", "linkCount": 1},
}

FULL_RESULT = {
    **FETCH_RESULT,
    "riskScore": 10,
    "categories": ["other"],
    "confidenceScore": 0.95,
    "reasoning": "Static placeholder page",
    "indicators": [],
    "modelUsed": "fake-model",
}


def _executor(output: RunOutput, **limits) -> SandboxExecutor:
    return SandboxExecutor(FakeRunner([output]), limits=SandboxLimits(**limits))


def _ok(stdout: str, stderr: str = "") -> RunOutput:
    return RunOutput(exit_code=0, stdout=stdout, stderr=stderr)


class TestExtraction:
    def test_last_object_wins(self):
        text = 'progress {"step": 1}\nnoise\n{"step": 2, "nested": {"a": [1, 2]}}\n'
        assert extract_last_json_object(text) == {"step": 2, "nested": {"a": [1, 2]}}

    def test_braces_inside_strings_do_not_confuse_the_scan(self):
        text = '{"reasoning": "uses } and { freely"}'
        assert extract_last_json_object(text) == {"reasoning": "uses } and { freely"}

    def test_no_object(self):
        assert extract_last_json_object("plain text [1, 2]") is None
        assert extract_last_json_object("{broken") is None


class TestExecutor:
    def test_wrapped_complete_result(self):
        stdout = "starting\n" + json.dumps({"jobId": "j1", "success": True, "result": FULL_RESULT})

        result = _executor(_ok(stdout)).execute("j1", "https://example.com")

        assert result.is_ok()
        payload = result.value.payload
        assert payload.has_assessment
        assert payload.risk_score == 10
        assert payload.content_hash == HASH_A

    def test_bare_fetch_only_payload(self):
        result = _executor(_ok(json.dumps(FETCH_RESULT))).execute("j1", "https://example.com")

        assert result.is_ok()
        assert not result.value.payload.has_assessment
        assert result.value.payload.metadata.title == "Example Domain"

    def test_unit_env_carries_job_and_url(self):
        runner = FakeRunner([_ok(json.dumps(FETCH_RESULT))])
        executor = SandboxExecutor(runner, extra_env={"FETCH_TIMEOUT_MS": "1000", "UNSET": None})

        executor.execute("j1", "https://example.com")

        env = runner.units[0].env
        assert env["JOB_ID"] == "j1"
        assert env["SCAN_URL"] == "https://example.com"
        assert env["FETCH_TIMEOUT_MS"] == "1000"
        assert "UNSET" not in env

    def test_reported_failure_is_a_crash(self):
        stdout = json.dumps({"jobId": "j1", "success": False, "error": {"type": "network", "message": "refused"}})

        result = _executor(_ok(stdout)).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.CRASH
        assert "refused" in result.error.message

    def test_non_zero_exit_is_a_crash_with_logs(self):
        output = RunOutput(exit_code=137, stdout="partial", stderr="Killed")

        result = _executor(output).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.CRASH
        assert result.error.details["exit_code"] == 137
        assert result.error.details["stderr_tail"] == "Killed"

    def test_no_json_is_a_parse_error(self):
        result = _executor(_ok("nothing useful here")).execute("j1", "https://example.com")
        assert result.error.code == ScanErrorCode.PARSE_ERROR

    def test_out_of_range_score_is_a_validation_error(self):
        bad = {**FULL_RESULT, "riskScore": 150}

        result = _executor(_ok(json.dumps({"success": True, "result": bad}))).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.VALIDATION_ERROR
        assert result.error.details["errors"]

    def test_partial_assessment_is_a_validation_error(self):
        partial = {**FETCH_RESULT, "riskScore": 20}

        result = _executor(_ok(json.dumps(partial))).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.VALIDATION_ERROR

    def test_missing_content_hash_is_a_validation_error(self):
        missing = {k: v for k, v in FETCH_RESULT.items() if k != "contentHash"}
        result = _executor(_ok(json.dumps(missing))).execute("j1", "https://example.com")
        assert result.error.code == ScanErrorCode.VALIDATION_ERROR

    def test_timed_out_run(self):
        output = RunOutput(exit_code=None, stdout="", stderr="", timed_out=True)

        result = _executor(output, timeout_ms=30000).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.TIMEOUT
        assert result.error.is_timeout

    def test_runner_failure_is_a_sandbox_error(self):
        runner = MagicMock(spec=SandboxRunner)
        runner.run.side_effect = SandboxRunnerError("docker daemon not reachable")

        result = SandboxExecutor(runner).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.SANDBOX_ERROR
        assert result.error.retryable


class _GoneHandle(SandboxHandle):
    """A unit that hangs and then vanishes before logs or removal."""

    unit_id = "gone-1"

    def __init__(self):
        self.killed = False

    def wait(self, timeout_seconds):
        raise SandboxTimeout("still running")

    def logs(self):
        raise SandboxGone("no such container")

    def kill(self):
        self.killed = True

    def remove(self):
        raise SandboxGone("no such container")


class _GoneRunner(SandboxRunner):
    def __init__(self):
        self.handle = _GoneHandle()

    def launch(self, unit, limits):
        return self.handle


class TestRunnerTemplate:
    def test_timeout_tolerates_a_unit_that_is_already_gone(self):
        runner = _GoneRunner()

        result = SandboxExecutor(runner, limits=SandboxLimits(timeout_ms=100)).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.TIMEOUT
        assert runner.handle.killed

    def test_logs_are_demultiplexed(self):
        class Handle(_GoneHandle):
            def wait(self, timeout_seconds):
                return 0

            def logs(self):
                return mux_frames([(STDERR, b"log line\n"), (STDOUT, json.dumps(FETCH_RESULT).encode())])

            def remove(self):
                pass

        runner = _GoneRunner()
        runner.handle = Handle()

        output = runner.run(SandboxUnit(job_id="j1", url="https://example.com"), SandboxLimits())

        assert output.exit_code == 0
        assert output.stderr == "log line\n"
        assert json.loads(output.stdout) == FETCH_RESULT


@pytest.mark.skipif(sys.platform == "win32", reason="Process groups are POSIX only")
class TestSubprocessRunner:
    def test_hanging_unit_is_killed_quickly(self):
        runner = SubprocessSandboxRunner(command=[sys.executable, "-c", "import time; time.sleep(30)"])
        executor = SandboxExecutor(runner, limits=SandboxLimits(timeout_ms=100))

        started = time.monotonic()
        result = executor.execute("j1", "https://example.com")
        elapsed = time.monotonic() - started

        assert result.error.code == ScanErrorCode.TIMEOUT
        assert elapsed < 0.5

    def test_output_round_trips_through_a_real_process(self):
        script = (
            "import json, os, sys\n"
            "print('fetching', file=sys.stderr)\n"
            f"result = {FETCH_RESULT!r}\n"
            "print(json.dumps({'jobId': os.environ['JOB_ID'], 'success': True, 'result': result}))\n"
        )
        runner = SubprocessSandboxRunner(command=[sys.executable, "-c", script])

        result = SandboxExecutor(runner, limits=SandboxLimits(timeout_ms=10000)).execute("j1", "https://example.com")

        assert result.is_ok()
        assert result.value.payload.content_hash == HASH_A
        assert "fetching" in result.value.stderr

    def test_non_zero_exit_from_a_real_process(self):
        runner = SubprocessSandboxRunner(command=[sys.executable, "-c", "import sys; sys.exit(3)"])

        result = SandboxExecutor(runner, limits=SandboxLimits(timeout_ms=10000)).execute("j1", "https://example.com")

        assert result.error.code == ScanErrorCode.CRASH
        assert result.error.details["exit_code"] == 3
