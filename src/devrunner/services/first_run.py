"""First-run guidance shown once an application has been up for a while."""

import threading
from typing import Callable, Optional

from rich.markup import escape

from devrunner.models import ProcGroup

FIRST_RUN_DELAY_SECONDS = 5.0


def render_first_run_guidance(session, proc: ProcGroup) -> str:
    endpoints = proc.meta.get("endpoints")
    base_url = f"http://{session.listen_addr}"
    if endpoints == 0:
        return (
            "\n  [yellow]Hint:[/yellow] your app is running but exposes no endpoints yet.\n"
            "  Define an API endpoint and it will show up here once the app reloads.\n"
        )
    return (
        "\n  [yellow]Hint:[/yellow] try calling your API with:\n"
        f"    [cyan]curl {escape(base_url)}/[/cyan]\n"
        "  Requests and traces show up in the development dashboard.\n"
    )


class FirstRunWatcher:
    """Races a session's completion against a fixed delay.

    If the session is still running when the delay expires, guidance is
    written to the session's stderr exactly once. A session that finishes
    first silences the watcher.
    """

    def __init__(
        self,
        logger,
        delay: float = FIRST_RUN_DELAY_SECONDS,
        render: Callable[[object, ProcGroup], str] = render_first_run_guidance,
    ):
        self.logger = logger
        self.delay = delay
        self.render = render

    def start(self, session, sink) -> threading.Thread:
        thread = threading.Thread(
            target=self.watch,
            args=(session, sink),
            name=f"first-run-{session.id}",
            daemon=True,
        )
        thread.start()
        return thread

    def watch(self, session, sink) -> bool:
        if session.done.wait(self.delay):
            return False

        proc: Optional[ProcGroup] = session.proc_group()
        if proc is None:
            self.logger.debug("No process group for %s; skipping first-run guidance.", session.id)
            return False

        sink.console(sink.stderr(buffered=False)).print(self.render(session, proc), end="")
        return True
