"""Mandatory upgrade gate run before any application starts."""

from typing import Optional

from rich.markup import escape

from devrunner.models import VersionUpdate


class UpgradeGate:
    """Blocks the run when a forced security upgrade is pending.

    The gate performs the upgrade and reports back; shutting down the daemon
    is left to the supervisor that receives the coordinator's outcome.
    """

    def __init__(self, version_checker, logger):
        self.version_checker = version_checker
        self.logger = logger

    def check(self, update: Optional[VersionUpdate], sink) -> bool:
        if update is None or not update.force_upgrade:
            return True

        stderr = sink.stderr(buffered=False)
        console = sink.console(stderr)
        self.logger.warning("Forced upgrade to %s pending; refusing to start run.", update.version)

        console.print("[red]An urgent security update for devrunner is available.[/red]")
        if update.security_notes:
            console.print(f"[yellow]{escape(update.security_notes)}[/yellow]")

        console.print(f"Upgrading devrunner to {escape(update.version)}...")
        try:
            self.version_checker.do_upgrade(update, stderr, stderr)
        except Exception as exc:
            self.logger.error("Upgrade to %s failed: %s", update.version, exc)
            console.print(f"[red]Upgrade failed: {escape(str(exc))}[/red]")

        sink.flush_buffers()
        sink.send_exit(1)
        return False
