# ============================================================================
# CLUSTER JOB MODEL TESTS
# ============================================================================
# STATUS: Tests - Pydantic models, enums and the gres parser
# PURPOSE: Verify model invariants without any I/O
# CREATED: 17 MAR 2026
# ============================================================================
"""
Cluster Job Model Tests

Covers:
1. Gres parsing and GPU detection
2. CommandsScript / CommandsGrid shape and JSON discrimination
3. ClusterJob argument parsing and file paths
4. ClusterJobLog status helpers and run_status mapping
5. JobResult exit code and failure folding

Run with:
    pytest tests/test_models.py -v
"""

import pytest
from pathlib import Path

from pydantic import ValidationError

from core.contracts import JobStatus, ResultType, RunStatus
from core.errors import JobStateError, ValidationFailedError
from core.gres import CountUnit, Gres, GresCount, requested_gpus
from core.models import (
    ClusterJob,
    ClusterJobLog,
    CommandsGrid,
    CommandsScript,
    HistoryEntry,
    JobResult,
)


def _log(*statuses, result=None) -> ClusterJobLog:
    return ClusterJobLog(
        job_id="job1",
        history=[HistoryEntry(status=s, timestamp=1000 + i) for i, s in enumerate(statuses)],
        result=result,
    )


# ============================================================================
# GRES
# ============================================================================

class TestGres:

    def test_name_only(self):
        assert Gres.parse_all("gpu") == [Gres("gpu")]

    def test_count_and_type(self):
        [gres] = Gres.parse_all("gpu:a100:2")
        assert gres.name == "gpu"
        assert gres.type == "a100"
        assert gres.count.expand() == 2

    def test_units(self):
        assert GresCount.parse("2k") == GresCount(2, CountUnit.K)
        assert GresCount.parse("1G").expand() == 1024 ** 3

    def test_list(self):
        parsed = Gres.parse_all("foo,bar:1G")
        assert [g.name for g in parsed] == ["foo", "bar"]

    @pytest.mark.parametrize("value", ["gpu:a:b:c", "gpu:x", "gpu:2q", "ok,gpu:a:b:c"])
    def test_unrecognizable(self, value):
        with pytest.raises(ValueError):
            Gres.parse_all(value)

    def test_requested_gpus(self):
        assert requested_gpus("gpu:3") == 3
        assert requested_gpus("gpu") == 1
        assert requested_gpus("foo:2") is None


# ============================================================================
# COMMANDS
# ============================================================================

class TestCommands:

    def test_script(self):
        commands = CommandsScript(commands=["a", "b"])
        assert not commands.is_array
        assert commands.array_size is None
        assert commands.representative_command() == "a"

    def test_script_array(self):
        commands = CommandsScript(commands=["a"], array_size=5, bundle_size=2)
        assert commands.is_array
        assert commands.num_jobs == 5

    def test_grid(self):
        commands = CommandsGrid(commands=[["a"], ["b", "c"]])
        assert commands.is_array
        assert commands.array_size == 2
        assert commands.display_lists() == [["a"], ["b", "c"]]

    def test_discriminated_by_type(self):
        job = ClusterJob.model_validate({
            "commands": {"type": "grid", "commands": [["x"]]},
            "dir": "/data",
        })
        assert isinstance(job.commands, CommandsGrid)

        round_tripped = ClusterJob.model_validate_json(job.model_dump_json())
        assert isinstance(round_tripped.commands, CommandsGrid)
        assert round_tripped.array_size == 1

    def test_bundle_size_positive(self):
        with pytest.raises(ValidationError):
            CommandsScript(commands=["a"], array_size=2, bundle_size=0)


# ============================================================================
# CLUSTER JOB
# ============================================================================

class TestClusterJob:

    def test_args_parsed(self):
        job = ClusterJob(
            commands=CommandsScript(),
            dir=Path("/data"),
            args=["--cpus-per-task=4 --mem=5G", "--exclusive", "--mem=6G"],
        )
        assert job.args_parsed == [
            ("cpus-per-task", "4"),
            ("mem", "5G"),
            (None, "--exclusive"),
            ("mem", "6G"),
        ]
        assert job.arg_values() == {"cpus-per-task": "4", "mem": "6G"}

    def test_unbalanced_quote_is_validation_error(self):
        job = ClusterJob(commands=CommandsScript(), dir=Path("/data"), args=["--job-name='oops"])
        with pytest.raises(ValidationFailedError, match="malformed argument"):
            job.args_parsed

    def test_id_or_raise(self):
        job = ClusterJob(commands=CommandsScript(), dir=Path("/data"))
        with pytest.raises(JobStateError):
            job.id_or_raise

    def test_paths(self):
        log_dir = Path("/shared/log")
        single = ClusterJob(job_id="j", commands=CommandsScript(), dir=Path("/d"))
        array = ClusterJob(job_id="k", commands=CommandsScript(array_size=3), dir=Path("/d"))

        assert single.batch_path(Path("/shared/batch")) == Path("/shared/batch/batch-j.sh")
        assert single.out_path_mask(log_dir) == Path("/shared/log/out-j.log")
        assert array.out_path(log_dir, 2) == Path("/shared/log/out-k.2.log")
        assert array.out_path_mask(log_dir) == Path("/shared/log/out-k.%a.log")


# ============================================================================
# LOG
# ============================================================================

class TestClusterJobLog:

    def test_status_is_last_entry(self):
        assert _log().status() is None
        assert _log(JobStatus.SUBMITTED, JobStatus.LAUNCHED).status() == JobStatus.LAUNCHED

    def test_terminal(self):
        assert not _log(JobStatus.SUBMITTED, JobStatus.CANCELING).is_terminal()
        assert _log(JobStatus.CANCELING, JobStatus.ABANDONED).is_terminal()

    def test_was_canceled(self):
        assert _log(JobStatus.STARTED, JobStatus.CANCELING, JobStatus.ENDED).was_canceled()
        assert not _log(JobStatus.STARTED, JobStatus.ENDED).was_canceled()

    def test_terminal_timestamp(self):
        assert _log(JobStatus.SUBMITTED).terminal_timestamp() is None
        assert _log(JobStatus.SUBMITTED, JobStatus.ENDED).terminal_timestamp() == 1001

    def test_legacy_status_name(self):
        entry = HistoryEntry.model_validate({"status": "finished", "timestamp": 1})
        assert entry.status == JobStatus.ENDED

    @pytest.mark.parametrize("log,expected", [
        (_log(JobStatus.SUBMITTED), RunStatus.WAITING),
        (_log(JobStatus.LAUNCHED), RunStatus.WAITING),
        (_log(JobStatus.STARTED), RunStatus.RUNNING),
        (_log(JobStatus.CANCELING), RunStatus.CANCELED),
        (_log(JobStatus.ABANDONED), RunStatus.FAILED),
        (_log(JobStatus.ENDED, result=JobResult(type=ResultType.SUCCESS)), RunStatus.SUCCEEDED),
        (_log(JobStatus.ENDED, result=JobResult(type=ResultType.CANCELED)), RunStatus.CANCELED),
        (_log(JobStatus.CANCELING, JobStatus.ENDED), RunStatus.CANCELED),
        (_log(JobStatus.ENDED), RunStatus.FAILED),
    ])
    def test_run_status(self, log, expected):
        assert log.run_status() == expected

    def test_array_index_is_one_based(self):
        with pytest.raises(ValidationError):
            ClusterJobLog(job_id="j", array_index=0)


# ============================================================================
# JOB RESULT
# ============================================================================

class TestJobResult:

    def test_nonzero_exit_fails(self):
        result = JobResult(type=ResultType.SUCCESS).apply_exit_code(2)
        assert result.type == ResultType.FAILURE
        assert result.exit_code == 2

    def test_zero_exit_keeps_type(self):
        for result_type in ResultType:
            result = JobResult(type=result_type).apply_exit_code(0)
            assert result.type == result_type
            assert result.exit_code == 0

    def test_nonzero_exit_keeps_canceled(self):
        assert JobResult(type=ResultType.CANCELED).apply_exit_code(130).type == ResultType.CANCELED

    def test_no_exit_code(self):
        result = JobResult(type=ResultType.SUCCESS)
        assert result.apply_exit_code(None) is result

    def test_failures_force_failure(self):
        assert JobResult(type=ResultType.CANCELED).apply_failures(True).type == ResultType.FAILURE
        assert JobResult(type=ResultType.SUCCESS).apply_failures(False).type == ResultType.SUCCESS
