"""Domain errors for devrunner."""

from typing import List, Optional, Tuple


class RunnerError(RuntimeError):
    """Raised when a run session cannot continue safely."""


class ConfigLoadError(RunnerError):
    """The per-app configuration could not be loaded."""


class TracingInitError(RunnerError):
    """The trace output could not be opened."""


class PortBindError(RunnerError):
    """The listen address could not be bound."""

    def __init__(
        self,
        listen_addr: str,
        cause: Exception,
        in_use: bool = False,
        suggestion: Optional[Tuple[str, int]] = None,
    ):
        super().__init__(f"could not listen on {listen_addr}: {cause}")
        self.listen_addr = listen_addr
        self.cause = cause
        self.in_use = in_use
        self.suggestion = suggestion


class AppResolutionError(RunnerError):
    """The application root does not map to a tracked app."""


class NamespaceResolutionError(RunnerError):
    """The requested namespace does not exist."""


class RunStartError(RunnerError):
    """The run manager failed to start the application.

    ``errors`` holds a structured list of sub-errors (for example one per
    compile failure); when it is empty the message is a single error.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class ForcedUpgradeError(RunnerError):
    """A mandatory upgrade ran; the whole daemon must stop."""


class RegistryError(RunnerError):
    """Internal stream registry invariant was violated."""


class SecretParseWarning(Exception):
    """A stored database secret could not be parsed.

    Recorded and logged, never raised out of the redactor.
    """

    def __init__(self, key: str, reason: str):
        super().__init__(f"{key}: {reason}")
        self.key = key
        self.reason = reason
