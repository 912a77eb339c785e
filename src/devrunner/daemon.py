"""Daemon-side supervisor that owns shared state across run sessions."""

import logging
import threading
from typing import Callable, Optional

from devrunner import __version__
from devrunner.coordinator import RunCoordinator
from devrunner.errors import ForcedUpgradeError
from devrunner.local import AppTracker, NamespaceStore, StaticSecretsStore, SubprocessRunManager
from devrunner.models import RunRequest
from devrunner.services.command_runner import CommandRunner
from devrunner.services.first_run import FIRST_RUN_DELAY_SECONDS, FirstRunWatcher
from devrunner.services.stream_registry import StreamRegistry
from devrunner.services.version_check import ReleaseChecker

logger = logging.getLogger("devrunner")

Send = Callable[[object], None]


class Daemon:
    """Runs coordinator sessions and turns a forced upgrade into a shutdown.

    Sessions never stop the process themselves. A forced upgrade comes back
    as an outcome; ``run`` raises ``ForcedUpgradeError`` and sessions started
    with ``serve_session`` set ``shutdown_requested`` instead.
    """

    def __init__(self, coordinator: RunCoordinator, version_checker=None):
        self.coordinator = coordinator
        self.version_checker = version_checker
        self.shutdown_requested = threading.Event()

    @property
    def registry(self) -> StreamRegistry:
        return self.coordinator.registry

    @classmethod
    def local(
        cls,
        dashboard_url: str = "http://localhost:9400",
        mcp_url: str = RunCoordinator.DEFAULT_MCP_BASE_URL,
        update_url: Optional[str] = None,
        upgrade_command: Optional[str] = None,
        first_run_delay: float = FIRST_RUN_DELAY_SECONDS,
        secrets: Optional[StaticSecretsStore] = None,
        color: bool = False,
    ) -> "Daemon":
        command_runner = CommandRunner(logger=logger)
        version_checker = ReleaseChecker(
            current_version=__version__,
            logger=logger,
            update_url=update_url,
            upgrade_command=upgrade_command,
            command_runner=command_runner,
        )
        coordinator = RunCoordinator(
            registry=StreamRegistry(),
            run_manager=SubprocessRunManager(command_runner=command_runner, dash_base_url=dashboard_url),
            apps=AppTracker(),
            namespaces=NamespaceStore(),
            secrets=secrets or StaticSecretsStore(),
            version_checker=version_checker,
            first_run=FirstRunWatcher(logger=logger, delay=first_run_delay),
            mcp_base_url=mcp_url,
            color=color,
        )
        return cls(coordinator, version_checker=version_checker)

    def check_for_updates(self):
        if self.version_checker is None:
            return None
        update = self.version_checker.check()
        if update is not None:
            logger.info("devrunner %s is available (running %s)", update.version, __version__)
        return update

    def run(self, request: RunRequest, stream: Send, cancel: Optional[threading.Event] = None) -> Optional[int]:
        outcome = self.coordinator.run(request, stream, cancel=cancel)
        if outcome.terminate_daemon:
            self.shutdown_requested.set()
            raise ForcedUpgradeError("A mandatory upgrade was installed; the daemon must restart.")
        return outcome.exit_code

    def serve_session(
        self,
        request: RunRequest,
        stream: Send,
        cancel: Optional[threading.Event] = None,
    ) -> threading.Thread:
        """Runs a session on its own thread, one per inbound request."""

        def target():
            try:
                self.run(request, stream, cancel=cancel)
            except ForcedUpgradeError as exc:
                logger.critical("%s", exc)

        thread = threading.Thread(target=target, name=f"run-session-{request.app_root}", daemon=True)
        thread.start()
        return thread
