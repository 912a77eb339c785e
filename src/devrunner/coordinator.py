import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.markup import escape

from devrunner import __version__
from devrunner.errors import (
    ConfigLoadError,
    PortBindError,
    RunStartError,
    TracingInitError,
)
from devrunner.models import (
    API_GATEWAY,
    DEFAULT_LISTEN_ADDR,
    DEFAULT_NAMESPACE,
    BrowserMode,
    DebugMode,
    RunOutcome,
    RunRequest,
    StartParams,
)
from devrunner.ports import AppResolver, NamespaceResolver, RunManager, RunSession, SecretsStore, VersionChecker
from devrunner.services.command_runner import split_command
from devrunner.services.config_loader import ConfigLoader
from devrunner.services.first_run import FirstRunWatcher
from devrunner.services.ops_tracker import OperationTracker
from devrunner.services.port_binder import PortBinder, is_loopback_host, join_host_port
from devrunner.services.secret_redactor import SecretRedactor
from devrunner.services.stream_log import StreamLog
from devrunner.services.stream_registry import StreamRegistry
from devrunner.services.tracing import Tracer, TracingService
from devrunner.services.upgrade_gate import UpgradeGate

logger = logging.getLogger("devrunner")

Send = Callable[[object], None]


class SessionCancelled(Exception):
    """The client went away before the session finished starting."""


class RunCoordinator:
    """Drives one local development run from request to termination.

    Every failure before the run starts is reported on the session stream
    followed by a single exit message; the coordinator then returns normally.
    The only outcome that reaches beyond the session is a forced upgrade,
    which is reported to the caller as ``terminate_daemon``.
    """

    DEFAULT_MCP_BASE_URL = "http://localhost:9900"
    WAIT_POLL_SECONDS = 0.2

    def __init__(
        self,
        registry: StreamRegistry,
        run_manager: RunManager,
        apps: AppResolver,
        namespaces: NamespaceResolver,
        secrets: SecretsStore,
        version_checker: VersionChecker,
        config_loader: Optional[ConfigLoader] = None,
        tracing: Optional[TracingService] = None,
        port_binder: Optional[PortBinder] = None,
        upgrade_gate: Optional[UpgradeGate] = None,
        redactor: Optional[SecretRedactor] = None,
        first_run: Optional[FirstRunWatcher] = None,
        mcp_base_url: str = DEFAULT_MCP_BASE_URL,
        color: bool = False,
    ):
        self.registry = registry
        self.run_manager = run_manager
        self.apps = apps
        self.namespaces = namespaces
        self.secrets = secrets
        self.version_checker = version_checker
        self.config_loader = config_loader or ConfigLoader()
        self.tracing = tracing or TracingService(logger=logger)
        self.port_binder = port_binder or PortBinder(logger=logger)
        self.upgrade_gate = upgrade_gate or UpgradeGate(version_checker, logger=logger)
        self.redactor = redactor or SecretRedactor(logger=logger)
        self.first_run = first_run or FirstRunWatcher(logger=logger)
        self.mcp_base_url = mcp_base_url.rstrip("/")
        self.color = color

    def run(
        self,
        request: RunRequest,
        stream: Send,
        cancel: Optional[threading.Event] = None,
    ) -> RunOutcome:
        cancel = cancel or threading.Event()
        sink = StreamLog(stream, buffered=True, color=self.color, logger=logger)
        console = sink.console(sink.stderr(buffered=False))

        with ExitStack() as stack:
            try:
                return self._run_session(request, sink, console, stack, cancel)
            except SessionCancelled:
                logger.info("Run for %s cancelled by client.", request.app_root)
                return RunOutcome(exit_code=None)
            except Exception as exc:
                logger.exception("Unexpected error while running %s", request.app_root)
                console.print(f"[bold red]Unexpected error:[/bold red] {escape(str(exc))}")
                sink.send_exit(1)
                return RunOutcome(exit_code=1)

    def _run_session(
        self,
        request: RunRequest,
        sink: StreamLog,
        console: Console,
        stack: ExitStack,
        cancel: threading.Event,
    ) -> RunOutcome:
        try:
            user_config = self.config_loader.load_app(request.app_root)
        except ConfigLoadError as exc:
            return self._fail(sink, console, f"failed to load config: {exc}")

        try:
            tracer = self.tracing.begin(request.app_root, request.working_dir, request.trace_file)
        except TracingInitError as exc:
            return self._fail(sink, console, f"failed to begin tracing: {exc}")
        stack.callback(tracer.close)

        listen_addr = request.listen_addr or DEFAULT_LISTEN_ADDR
        self._check_cancelled(cancel)
        try:
            with self._traced(tracer, "bind_port"):
                listener = self.port_binder.bind(listen_addr)
        except PortBindError as exc:
            self._report_bind_failure(console, exc)
            sink.send_exit(1)
            return RunOutcome(exit_code=1)
        stack.callback(listener.close)

        self._check_cancelled(cancel)
        try:
            with self._traced(tracer, "resolve_app"):
                app = self.apps.track(request.app_root)
        except Exception as exc:
            return self._fail(sink, console, f"failed to resolve app: {exc}")

        try:
            with self._traced(tracer, "resolve_namespace"):
                namespace = self.namespaces.namespace_or_active(app, request.namespace)
        except Exception as exc:
            return self._fail(sink, console, f"failed to resolve namespace: {exc}")

        ops = OperationTracker(console)
        stack.callback(ops.all_done)

        # Read the update before the app starts so its output cannot race
        # with the notice printed after the banner.
        update = self.version_checker.available_update()
        if not self.upgrade_gate.check(update, sink):
            tracer.event("forced_upgrade", version=update.version)
            return RunOutcome(exit_code=1, terminate_daemon=True)

        self._check_cancelled(cancel)
        params = StartParams(
            app=app,
            namespace=namespace,
            working_dir=request.working_dir,
            listener=listener.socket,
            listen_addr=listener.display_addr,
            sink=sink,
            ops=ops,
            watch=request.watch,
            environ=tuple(request.environ),
            browser=self._resolve_browser(request.browser, user_config),
            debug=request.debug_mode,
            command=split_command(user_config["command"]) if user_config.get("command") else None,
            env={str(k): str(v) for k, v in (user_config.get("env") or {}).items()},
            experiments=[str(name) for name in user_config.get("experiments") or []],
        )
        try:
            with self._traced(tracer, "start_run"):
                session = self.run_manager.start(params, cancel)
        except Exception as exc:
            self._report_start_failure(sink, exc)
            sink.send_exit(1)
            return RunOutcome(exit_code=1)
        stack.callback(session.close)

        self.registry.register(session.id, sink, listen_addr=session.listen_addr)
        stack.callback(self.registry.remove, session.id)
        ops.all_done()
        tracer.event("session_running", run_id=session.id, listen_addr=session.listen_addr)

        self._announce(request, app, session, update, console)
        sink.flush_buffers()

        self.first_run.start(session, sink)
        self._wait_completion(session, cancel)
        tracer.event("session_finished", run_id=session.id)
        return RunOutcome(exit_code=None)

    def _wait_completion(self, session: RunSession, cancel: threading.Event):
        closed = False
        while not session.done.wait(self.WAIT_POLL_SECONDS):
            if cancel.is_set() and not closed:
                logger.info("Client disconnected; stopping run %s", session.id)
                session.close()
                closed = True

    def _announce(self, request: RunRequest, app, session, update, console: Console):
        app_id = escape(app.platform_or_local_id)
        dash_base_url = getattr(self.run_manager, "dash_base_url", "").rstrip("/")

        console.print()
        console.print("  devrun development server running!\n")
        console.print(f"  Your API is running at:     [cyan]http://{escape(session.listen_addr)}[/cyan]")
        console.print(f"  Development Dashboard URL:  [cyan]{escape(dash_base_url)}/{app_id}[/cyan]")
        console.print(f"  MCP SSE URL:                [cyan]{escape(self.mcp_base_url)}/sse?appID={app_id}[/cyan]")

        namespace = session.namespace
        if not namespace.active or namespace.name != DEFAULT_NAMESPACE:
            console.print(f"  Namespace:                  [cyan]{escape(namespace.name)}[/cyan]")
            external_dbs = self._external_databases(app)
            if external_dbs:
                console.print("  External databases:")
            for db_name, conn_string in external_dbs.items():
                console.print(f"     {escape(db_name)}: [cyan]{escape(conn_string)}[/cyan]")

        proc = session.proc_group()
        if request.debug_mode != DebugMode.DISABLED and proc is not None:
            gateway = proc.gateways.get(API_GATEWAY)
            if gateway is not None:
                console.print(f"  Process ID:                 [cyan]{gateway.pid}[/cyan]")

        if proc is not None and proc.experiments:
            names = ", ".join(proc.experiments)
            console.print(f"  Enabled experiment(s):      [yellow]{escape(names)}[/yellow]")

        if update is not None:
            self._announce_update(update, console)
        console.print()

    def _announce_update(self, update, console: Console):
        new_version = escape(update.version)
        if update.security_update:
            console.print(
                f"\n[yellow]  New devrunner release available with security updates: {new_version} "
                f"(you have {__version__})\n  Update with: devrun version update[/yellow]"
            )
            if update.security_notes:
                console.print(f"\n[dim]  {escape(update.security_notes)}[/dim]")
        else:
            console.print(
                f"\n[dim]  New devrunner release available: {new_version} (you have {__version__})\n"
                "  Update with: devrun version update[/dim]"
            )

    def _external_databases(self, app) -> Dict[str, str]:
        try:
            bundle = self.secrets.load(app).get(None)
        except Exception as exc:
            logger.warning("Could not load secrets for %s: %s", app.platform_or_local_id, exc)
            return {}
        return self.redactor.redact(bundle or {}).databases

    def _resolve_browser(self, requested: BrowserMode, user_config: Dict[str, Any]) -> BrowserMode:
        if requested == BrowserMode.AUTO:
            return BrowserMode.from_config(user_config.get("browser"))
        return requested

    def _report_bind_failure(self, console: Console, exc: PortBindError):
        listen_addr = escape(exc.listen_addr)
        if exc.in_use:
            console.print(f"[red]Failed to run on {listen_addr} - port is already in use[/red]")
        else:
            console.print(f"[red]Failed to run on {listen_addr} - {escape(str(exc.cause))}[/red]")

        if exc.suggestion is None:
            console.print("Note: specify [cyan]--port=NUMBER[/cyan] to run on another port")
            return

        host, port = exc.suggestion
        if is_loopback_host(host):
            console.print(f"Note: port {port} is available; specify [cyan]--port={port}[/cyan] to use it")
        else:
            address = escape(join_host_port(host, port))
            console.print(
                f"Note: address {address} is available; specify [cyan]--listen={address}[/cyan] to use it"
            )

    def _report_start_failure(self, sink: StreamLog, exc: Exception):
        logger.debug("Run start failed: %s", exc)
        if isinstance(exc, RunStartError) and exc.errors:
            sink.send_errors(exc.errors)
            return

        message = str(exc)
        if not message.endswith("\n"):
            message += "\n"
        sink.stderr(buffered=False).write(message)

    def _fail(self, sink: StreamLog, console: Console, message: str) -> RunOutcome:
        logger.debug("Run session failed: %s", message)
        console.print(f"[red]{escape(message)}[/red]")
        sink.send_exit(1)
        return RunOutcome(exit_code=1)

    @staticmethod
    def _check_cancelled(cancel: threading.Event):
        if cancel.is_set():
            raise SessionCancelled()

    @contextmanager
    def _traced(self, tracer: Tracer, name: str):
        tracer.step_started(name)
        try:
            yield
        except Exception as exc:
            tracer.step_finished(name, "failed", error=str(exc))
            raise
        tracer.step_finished(name, "success")
