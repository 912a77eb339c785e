import sys

import pytest

from devrunner.errors import RunnerError
from devrunner.services.command_runner import CommandRunner, split_command


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


def test_split_command_accepts_strings_and_lists():
    assert split_command("python -m 'my app'") == ["python", "-m", "my app"]
    assert split_command(["node", 3]) == ["node", "3"]


def test_command_runner_raises_with_stderr():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(RunnerError, match="boom"):
        runner.run([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"])


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run([sys.executable, "-c", "import sys; sys.exit(1)"], check=False)

    assert result.returncode == 1


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(RunnerError, match="timed out"):
        runner.run([sys.executable, "-c", "import time; time.sleep(2)"], timeout=0.1)


def test_command_runner_missing_binary():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(RunnerError, match="Required command not found"):
        runner.run(["devrunner-definitely-missing-binary"])

    with pytest.raises(RunnerError, match="Required command not found"):
        runner.spawn(["devrunner-definitely-missing-binary"])


def test_spawn_pipes_output(tmp_path):
    runner = CommandRunner(logger=DummyLogger())

    process = runner.spawn([sys.executable, "-c", "print('hello')"], cwd=str(tmp_path))
    stdout, _ = process.communicate(timeout=10)

    assert process.returncode == 0
    assert stdout.strip() == b"hello"


def test_spawn_rejects_empty_command():
    with pytest.raises(RunnerError, match="empty command"):
        CommandRunner(logger=DummyLogger()).spawn("")
