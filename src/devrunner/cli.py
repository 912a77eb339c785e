import logging
import os
import sys
import threading

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .daemon import Daemon
from .errors import RunnerError
from .local import StaticSecretsStore
from .models import BrowserMode, DebugMode, ErrorListMessage, ExitMessage, OutputMessage, RunRequest
from .services.config_loader import DAEMON_CONFIG_FILE, DAEMON_CONFIG_KEYS, ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


class TerminalStream:
    """Renders session stream messages on the local terminal."""

    def __init__(self):
        self.stdout = sys.stdout.buffer
        self.stderr = sys.stderr.buffer
        self.console = Console(stderr=True, highlight=False)
        self.exit_code = None
        self._lock = threading.Lock()

    def send(self, message):
        with self._lock:
            if isinstance(message, OutputMessage):
                target = self.stdout if message.stream == "stdout" else self.stderr
                target.write(message.data)
                target.flush()
            elif isinstance(message, ErrorListMessage):
                for error in message.errors:
                    self.console.print(f"[red]error:[/red] {escape(error)}")
            elif isinstance(message, ExitMessage):
                self.exit_code = message.code


@click.command()
@click.option("--app-root", type=click.Path(file_okay=False), default=".", help="Application root directory.")
@click.option("--working-dir", default=None, help="Working directory of the run (default: current directory).")
@click.option("--port", type=int, default=None, help="Port to listen on (default: 4000).")
@click.option("--listen", default=None, help="Address to listen on, e.g. 127.0.0.1:4000. Overrides --port.")
@click.option("--namespace", "-n", default=None, help="Namespace to run in (default: the active namespace).")
@click.option(
    "--browser",
    type=click.Choice([mode.value for mode in BrowserMode]),
    default=BrowserMode.AUTO.value,
    help="Whether to open the development dashboard in a browser.",
)
@click.option(
    "--debug",
    type=click.Choice([mode.value for mode in DebugMode]),
    default=DebugMode.DISABLED.value,
    help="Compile and run with debugging support.",
)
@click.option("--env", "-e", "environ", multiple=True, help="Environment override as KEY=VALUE. Repeatable.")
@click.option("--trace", "trace_file", type=click.Path(dir_okay=False), default=None, help="Write a JSON trace.")
@click.option("--watch/--no-watch", default=True, help="Watch for changes and reload.")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML daemon configuration file. Defaults to {DAEMON_CONFIG_FILE} if present.",
)
@click.option("--color/--no-color", default=None, help="Force coloured output on or off.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    app_root,
    working_dir,
    port,
    listen,
    namespace,
    browser,
    debug,
    environ,
    trace_file,
    watch,
    config,
    color,
    verbose,
    log_file,
):
    """Run a local development instance of the application."""
    logger = logging.getLogger("devrunner")

    try:
        config_loader = ConfigLoader(supported_keys=DAEMON_CONFIG_KEYS)
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DAEMON_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except RunnerError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    first_run_delay = float(_resolve_option(None, config_values, "first_run_delay", default=5.0))

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    listen_addr = listen or (f":{port}" if port is not None else "")
    if color is None:
        color = click.get_text_stream("stderr").isatty()

    request = RunRequest(
        app_root=os.path.abspath(app_root),
        working_dir=working_dir or os.getcwd(),
        listen_addr=listen_addr,
        environ=tuple(environ),
        namespace=namespace,
        browser=BrowserMode(browser),
        debug_mode=DebugMode(debug),
        trace_file=trace_file,
        watch=watch,
    )

    daemon = Daemon.local(
        dashboard_url=_resolve_option(None, config_values, "dashboard_url", default="http://localhost:9400"),
        mcp_url=_resolve_option(None, config_values, "mcp_url", default="http://localhost:9900"),
        update_url=_resolve_option(None, config_values, "update_url"),
        upgrade_command=_resolve_option(None, config_values, "upgrade_command"),
        first_run_delay=first_run_delay,
        secrets=StaticSecretsStore.from_environ(os.environ),
        color=color,
    )
    daemon.check_for_updates()

    terminal = TerminalStream()
    cancel = threading.Event()
    session = daemon.serve_session(request, terminal.send, cancel=cancel)
    try:
        while session.is_alive():
            session.join(0.2)
    except KeyboardInterrupt:
        terminal.console.print("[bold red]Run cancelled by user.[/bold red]")
        logger.info("Run cancelled by user")
        cancel.set()
        session.join()
        raise SystemExit(1)

    if daemon.shutdown_requested.is_set():
        raise SystemExit(1)
    raise SystemExit(terminal.exit_code or 0)


if __name__ == "__main__":
    main()
