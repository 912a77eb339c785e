"""Release checks and self-upgrade for the daemon."""

import os
import threading
from typing import IO, Optional

import requests
from packaging import version

from devrunner.errors import RunnerError
from devrunner.errors_catalog import actionable_error
from devrunner.models import VersionUpdate


class ReleaseChecker:
    """Fetches the latest release manifest and caches it daemon-wide.

    The manifest is a JSON object with ``version`` and the optional flags
    ``force_upgrade``, ``security_update`` and ``security_notes``.
    """

    def __init__(
        self,
        current_version: str,
        logger,
        update_url: Optional[str] = None,
        upgrade_command: Optional[str] = None,
        command_runner=None,
        requests_module=requests,
        timeout: float = 10.0,
    ):
        self.current_version = current_version
        self.logger = logger
        self.update_url = update_url
        self.upgrade_command = upgrade_command
        self.command_runner = command_runner
        self.requests = requests_module
        self.timeout = timeout
        self._lock = threading.Lock()
        self._update: Optional[VersionUpdate] = None

    def available_update(self) -> Optional[VersionUpdate]:
        with self._lock:
            return self._update

    def set_update(self, update: Optional[VersionUpdate]):
        with self._lock:
            self._update = update

    def check(self) -> Optional[VersionUpdate]:
        """Refreshes the cached update; failures keep the previous value."""
        if not self.update_url:
            return self.available_update()

        try:
            response = self.requests.get(self.update_url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (self.requests.RequestException, ValueError) as exc:
            self.logger.warning(
                "%s (%s)", actionable_error("update_check_failed", url=self.update_url), exc
            )
            return self.available_update()

        update = self._parse_manifest(payload)
        self.set_update(update)
        return update

    def do_upgrade(self, update: VersionUpdate, stdout: IO[str], stderr: IO[str]):
        if not self.upgrade_command or self.command_runner is None:
            raise RunnerError("No upgrade command configured; upgrade devrunner manually.")

        env = dict(os.environ)
        env["DEVRUN_TARGET_VERSION"] = update.version
        result = self.command_runner.run(self.upgrade_command, check=False, env=env)
        if result.stdout:
            stdout.write(result.stdout)
        if result.stderr:
            stderr.write(result.stderr)
        if result.returncode != 0:
            raise RunnerError(f"upgrade command exited with code {result.returncode}")

    def _parse_manifest(self, payload) -> Optional[VersionUpdate]:
        if not isinstance(payload, dict) or not payload.get("version"):
            self.logger.warning("Ignoring malformed release manifest from %s", self.update_url)
            return None

        latest = str(payload["version"]).lstrip("v")
        if not self._is_newer(latest):
            self.logger.debug("devrunner %s is up to date (latest %s)", self.current_version, latest)
            return None

        return VersionUpdate(
            version=latest,
            force_upgrade=bool(payload.get("force_upgrade", False)),
            security_update=bool(payload.get("security_update", False)),
            security_notes=str(payload.get("security_notes") or ""),
        )

    def _is_newer(self, latest: str) -> bool:
        try:
            return version.parse(latest) > version.parse(self.current_version.lstrip("v"))
        except version.InvalidVersion:
            return latest != self.current_version
