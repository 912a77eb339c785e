import io
import subprocess

import pytest

from devrunner.errors import RunnerError
from devrunner.models import VersionUpdate
from devrunner.services.version_check import ReleaseChecker


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *args, **_kwargs):
        self.warnings.append(args)


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self.payload


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = 0

    def get(self, *_args, **_kwargs):
        self.calls += 1
        if self.error:
            raise self.error
        return FakeResponse(self.payload)


class FakeCommandRunner:
    def __init__(self, returncode=0):
        self.returncode = returncode
        self.calls = []

    def run(self, cmd, check=True, timeout=None, cwd=None, env=None):
        self.calls.append((cmd, env["DEVRUN_TARGET_VERSION"]))
        return subprocess.CompletedProcess(cmd, self.returncode, stdout="installed\n", stderr="")


def _checker(requests_module, **kwargs):
    return ReleaseChecker(
        current_version="1.0.0",
        logger=DummyLogger(),
        update_url="https://releases.example.com/devrunner.json",
        requests_module=requests_module,
        **kwargs,
    )


def test_check_caches_newer_release():
    checker = _checker(
        FakeRequestsModule(
            {"version": "v1.1.0", "security_update": True, "security_notes": "Patch for session tokens"}
        )
    )

    update = checker.check()

    assert update == VersionUpdate(
        version="1.1.0",
        force_upgrade=False,
        security_update=True,
        security_notes="Patch for session tokens",
    )
    assert checker.available_update() == update


def test_check_ignores_same_or_older_release():
    checker = _checker(FakeRequestsModule({"version": "0.9.0", "force_upgrade": True}))

    assert checker.check() is None
    assert checker.available_update() is None


def test_check_failure_keeps_previous_value():
    requests_module = FakeRequestsModule(error=FakeRequestsModule.RequestException("timeout"))
    checker = _checker(requests_module)
    previous = VersionUpdate(version="1.5.0")
    checker.set_update(previous)

    assert checker.check() is previous
    assert requests_module.calls == 1
    assert checker.logger.warnings


def test_check_without_url_does_not_fetch():
    requests_module = FakeRequestsModule({"version": "9.0.0"})
    checker = ReleaseChecker(current_version="1.0.0", logger=DummyLogger(), requests_module=requests_module)

    assert checker.check() is None
    assert requests_module.calls == 0


def test_do_upgrade_runs_configured_command():
    runner = FakeCommandRunner()
    checker = _checker(FakeRequestsModule(), upgrade_command="pip install -U devrunner", command_runner=runner)
    stdout, stderr = io.StringIO(), io.StringIO()

    checker.do_upgrade(VersionUpdate(version="1.1.0", force_upgrade=True), stdout, stderr)

    assert runner.calls == [("pip install -U devrunner", "1.1.0")]
    assert stdout.getvalue() == "installed\n"


def test_do_upgrade_fails_without_command_or_on_error():
    checker = _checker(FakeRequestsModule())
    with pytest.raises(RunnerError, match="No upgrade command configured"):
        checker.do_upgrade(VersionUpdate(version="1.1.0"), io.StringIO(), io.StringIO())

    failing = _checker(FakeRequestsModule(), upgrade_command="upgrade", command_runner=FakeCommandRunner(2))
    with pytest.raises(RunnerError, match="exited with code 2"):
        failing.do_upgrade(VersionUpdate(version="1.1.0"), io.StringIO(), io.StringIO())
