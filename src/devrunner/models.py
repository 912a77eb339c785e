"""Shared domain models for devrunner."""

import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

DEFAULT_LISTEN_ADDR = ":4000"
DEFAULT_NAMESPACE = "default"
API_GATEWAY = "api-gateway"

SecretBundle = Mapping[str, str]


class BrowserMode(str, Enum):
    AUTO = "auto"
    NEVER = "never"
    ALWAYS = "always"
    LOCAL_ONLY = "local-only"

    @classmethod
    def from_config(cls, value: Optional[str]) -> "BrowserMode":
        if not value:
            return cls.AUTO
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.AUTO


class DebugMode(str, Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"
    BREAK = "break"


@dataclass(frozen=True)
class RunRequest:
    """Inbound request to start one local development run."""

    app_root: str
    working_dir: str = "."
    listen_addr: str = ""
    environ: Tuple[str, ...] = ()
    namespace: Optional[str] = None
    browser: BrowserMode = BrowserMode.AUTO
    debug_mode: DebugMode = DebugMode.DISABLED
    trace_file: Optional[str] = None
    watch: bool = False


@dataclass(frozen=True)
class App:
    root: str
    local_id: str
    platform_id: Optional[str] = None

    @property
    def platform_or_local_id(self) -> str:
        return self.platform_id or self.local_id


@dataclass(frozen=True)
class Namespace:
    name: str
    active: bool = False


@dataclass(frozen=True)
class VersionUpdate:
    version: str
    force_upgrade: bool = False
    security_update: bool = False
    security_notes: str = ""


@dataclass(frozen=True)
class Gateway:
    name: str
    pid: int


@dataclass
class ProcGroup:
    """Metadata about the process group serving a run."""

    gateways: Dict[str, Gateway] = field(default_factory=dict)
    experiments: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StartParams:
    """Everything a run manager needs to launch an application."""

    app: App
    namespace: Namespace
    working_dir: str
    listener: socket.socket
    listen_addr: str
    sink: Any
    ops: Any
    watch: bool = False
    environ: Tuple[str, ...] = ()
    browser: BrowserMode = BrowserMode.AUTO
    debug: DebugMode = DebugMode.DISABLED
    command: Optional[List[str]] = None
    env: Dict[str, str] = field(default_factory=dict)
    experiments: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RunOutcome:
    """How a session ended, as seen by the daemon supervisor."""

    exit_code: Optional[int]
    terminate_daemon: bool = False


@dataclass(frozen=True)
class OutputMessage:
    stream: str  # "stdout" | "stderr"
    data: bytes


@dataclass(frozen=True)
class ErrorListMessage:
    errors: Tuple[str, ...]


@dataclass(frozen=True)
class ExitMessage:
    code: int
