"""Tests for Task completion rules."""

import pytest

from sshbridge.core.errors import SSHChannelError, SSHError
from sshbridge.worker.task import Status, Task, TaskResult


def _ok_task(**kwargs):
    return Task("test.ok", execute=lambda: TaskResult(status=Status.OK), **kwargs)


def test_default_resolve_ok_returns_none():
    task = _ok_task()
    result = task.execute()
    assert task.on_success(result) is None
    assert task.completed


def test_default_resolve_rejects_with_detail():
    task = Task("test.fail", execute=lambda: TaskResult(status=Status.ERROR, error="broken pipe"))
    result = task.execute()
    with pytest.raises(SSHError, match="^broken pipe$"):
        task.on_success(result)


def test_default_resolve_without_detail_uses_default_message():
    task = Task("test.fail", execute=lambda: TaskResult(status=Status.ERROR))
    result = task.execute()
    with pytest.raises(SSHError, match="^SSH Error$"):
        task.on_success(result)


def test_execute_must_return_task_result():
    task = Task("test.bad", execute=lambda: 0)
    with pytest.raises(TypeError, match="must return TaskResult"):
        task.execute()


def test_completion_before_execute_is_rejected():
    task = _ok_task()
    with pytest.raises(RuntimeError, match="before execute"):
        task.on_success(TaskResult(status=Status.OK))


def test_completion_happens_once():
    task = _ok_task()
    result = task.execute()
    task.on_success(result)
    with pytest.raises(RuntimeError, match="completed twice"):
        task.on_success(result)
    with pytest.raises(RuntimeError, match="completed twice"):
        task.on_failure(ValueError("late"))


def test_resolve_maps_payload():
    task = Task(
        "test.read",
        execute=lambda: TaskResult(status=3, payload=bytearray(b"abcdef")),
        resolve=lambda r: bytes(r.payload[:r.status]),
    )
    assert task.on_success(task.execute()) == b"abc"


def test_settle_reports_outcome():
    outcomes = []
    ok = _ok_task(settle=outcomes.append)
    ok.on_success(ok.execute())

    failing = Task(
        "test.fail",
        execute=lambda: TaskResult(status=Status.ERROR, error="nope"),
        settle=outcomes.append,
    )
    with pytest.raises(SSHError):
        failing.on_success(failing.execute())

    assert outcomes == [True, False]


def test_settle_runs_when_resolver_raises_non_ssh_error():
    outcomes = []

    def resolve(result):
        raise KeyError("bad mapping")

    task = _ok_task(resolve=resolve, settle=outcomes.append)
    with pytest.raises(KeyError):
        task.on_success(task.execute())
    assert outcomes == [False]


def test_on_failure_translates_fault():
    def boom():
        raise OSError("connection reset")

    outcomes = []
    task = Task(
        "test.boom",
        execute=boom,
        settle=outcomes.append,
        failure_message="Failed to read from channel",
        error_cls=SSHChannelError,
    )
    with pytest.raises(OSError) as excinfo:
        task.execute()

    error = task.on_failure(excinfo.value)
    assert isinstance(error, SSHChannelError)
    assert str(error) == "Failed to read from channel: connection reset"
    assert error.__cause__ is excinfo.value
    assert outcomes == [False]


def test_on_failure_passes_ssh_errors_through():
    original = SSHChannelError("already translated")

    def boom():
        raise original

    task = Task("test.boom", execute=boom, failure_message="ignored")
    with pytest.raises(SSHChannelError):
        task.execute()
    assert task.on_failure(original) is original


def test_duration_recorded():
    task = _ok_task()
    assert "pending" in repr(task)
    task.execute()
    assert task.duration_ms >= 0
    assert "executed" in repr(task)
