"""Ports (interfaces) for the collaborators a run session depends on.

The coordinator only talks to these contracts. Local implementations live in
``devrunner.local``; tests substitute small fakes.
"""

from __future__ import annotations

import threading
from typing import IO, Optional, Protocol

from devrunner.models import (
    App,
    Namespace,
    ProcGroup,
    SecretBundle,
    StartParams,
    VersionUpdate,
)


class RunSession(Protocol):
    """A started run. ``done`` fires exactly once when the run ends."""

    id: str
    listen_addr: str
    namespace: Namespace
    done: threading.Event

    def proc_group(self) -> Optional[ProcGroup]:
        ...

    def close(self) -> None:
        ...


class RunManager(Protocol):
    dash_base_url: str

    def start(self, params: StartParams, cancel: threading.Event) -> RunSession:
        ...


class AppResolver(Protocol):
    def track(self, app_root: str) -> App:
        ...


class NamespaceResolver(Protocol):
    def namespace_or_active(self, app: App, name: Optional[str]) -> Namespace:
        ...


class AppSecrets(Protocol):
    def get(self, selector=None) -> SecretBundle:
        ...


class SecretsStore(Protocol):
    def load(self, app: App) -> AppSecrets:
        ...


class VersionChecker(Protocol):
    def available_update(self) -> Optional[VersionUpdate]:
        ...

    def do_upgrade(self, update: VersionUpdate, stdout: IO[str], stderr: IO[str]) -> None:
        ...
