"""Runs an application as a local subprocess that inherits the run listener."""

import logging
import os
import subprocess
import threading
import uuid
import webbrowser
from typing import IO, Callable, Dict, List, Optional

from devrunner.errors import RunnerError, RunStartError
from devrunner.errors_catalog import actionable_error
from devrunner.models import API_GATEWAY, BrowserMode, Gateway, Namespace, ProcGroup, StartParams
from devrunner.services.command_runner import CommandRunner
from devrunner.services.port_binder import is_loopback_host, split_host_port

logger = logging.getLogger("devrunner")


def parse_environ(environ) -> Dict[str, str]:
    values: Dict[str, str] = {}
    invalid: List[str] = []
    for entry in environ:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            invalid.append(f"invalid environment override {entry!r}: expected KEY=VALUE")
            continue
        values[key] = value
    if invalid:
        raise RunStartError("invalid environment overrides", errors=invalid)
    return values


class SubprocessRun:
    """A running application process and its completion signal."""

    def __init__(
        self,
        process,
        listen_addr: str,
        namespace: Namespace,
        experiments: List[str],
        meta: Dict[str, object],
        stop_timeout: float = 5.0,
    ):
        self.id = uuid.uuid4().hex
        self.process = process
        self.listen_addr = listen_addr
        self.namespace = namespace
        self.done = threading.Event()
        self.stop_timeout = stop_timeout
        self._proc_group = ProcGroup(
            gateways={API_GATEWAY: Gateway(name=API_GATEWAY, pid=process.pid)},
            experiments=list(experiments),
            meta=dict(meta),
        )
        self._close_lock = threading.Lock()

    def proc_group(self) -> Optional[ProcGroup]:
        return self._proc_group

    def close(self):
        with self._close_lock:
            if self.process.poll() is not None:
                return
            logger.debug("Stopping process %s for run %s", self.process.pid, self.id)
            self.process.terminate()
            try:
                self.process.wait(timeout=self.stop_timeout)
            except subprocess.TimeoutExpired:
                logger.warning("Process %s did not stop in time; killing it.", self.process.pid)
                self.process.kill()
                self.process.wait()


class SubprocessRunManager:
    """Starts the command configured in ``.devrun.yml`` for each run."""

    def __init__(
        self,
        command_runner: Optional[CommandRunner] = None,
        dash_base_url: str = "http://localhost:9400",
        open_browser: Callable[[str], object] = webbrowser.open,
        stop_timeout: float = 5.0,
    ):
        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.dash_base_url = dash_base_url
        self.open_browser = open_browser
        self.stop_timeout = stop_timeout

    def start(self, params: StartParams, cancel: threading.Event) -> SubprocessRun:
        if cancel.is_set():
            raise RunStartError("run cancelled before start")
        if not params.command:
            raise RunStartError(
                actionable_error("missing_run_command", app=params.app.platform_or_local_id)
            )
        if params.watch:
            logger.info("Watch mode is handled by the build pipeline; changes do not restart the process.")

        env = self._build_env(params)
        cwd = params.working_dir
        if not os.path.isabs(cwd):
            cwd = os.path.normpath(os.path.join(params.app.root, cwd))

        op = params.ops.add("Starting application")
        try:
            process = self.command_runner.spawn(
                params.command,
                cwd=cwd,
                env=env,
                pass_fds=(params.listener.fileno(),),
            )
        except RunnerError as exc:
            params.ops.fail(op, exc)
            raise RunStartError(str(exc)) from exc
        params.ops.done(op)

        run = SubprocessRun(
            process,
            listen_addr=params.listen_addr,
            namespace=params.namespace,
            experiments=params.experiments,
            meta={"command": list(params.command), "app_id": params.app.platform_or_local_id},
            stop_timeout=self.stop_timeout,
        )
        pumps = [
            self._pump(process.stdout, params.sink.stdout(), run.id),
            self._pump(process.stderr, params.sink.stderr(), run.id),
        ]
        threading.Thread(
            target=self._wait, args=(run, pumps), name=f"run-wait-{run.id}", daemon=True
        ).start()

        if self._should_open_browser(params):
            self.open_browser(f"{self.dash_base_url.rstrip('/')}/{params.app.platform_or_local_id}")
        return run

    def _build_env(self, params: StartParams) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(params.env)
        env.update(parse_environ(params.environ))
        env.update(
            {
                "PORT": str(params.listener.getsockname()[1]),
                "LISTEN_ADDR": params.listen_addr,
                "LISTEN_FD": str(params.listener.fileno()),
                "DEVRUN_NAMESPACE": params.namespace.name,
                "DEVRUN_DEBUG": params.debug.value,
            }
        )
        if params.experiments:
            env["DEVRUN_EXPERIMENTS"] = ",".join(params.experiments)
        return env

    def _should_open_browser(self, params: StartParams) -> bool:
        if params.browser == BrowserMode.ALWAYS:
            return True
        if params.browser == BrowserMode.LOCAL_ONLY:
            host, _ = split_host_port(params.listen_addr)
            return is_loopback_host(host)
        return False

    def _pump(self, pipe: IO[bytes], writer, run_id: str) -> threading.Thread:
        def copy():
            for line in iter(pipe.readline, b""):
                writer.write(line)
            pipe.close()

        thread = threading.Thread(target=copy, name=f"run-output-{run_id}", daemon=True)
        thread.start()
        return thread

    def _wait(self, run: SubprocessRun, pumps: List[threading.Thread]):
        returncode = run.process.wait()
        for pump in pumps:
            pump.join()
        logger.info("Run %s exited with code %s", run.id, returncode)
        run.done.set()
