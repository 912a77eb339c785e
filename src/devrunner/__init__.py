"""
devrunner - Local development run orchestrator
"""

__version__ = "0.1.0"

from .coordinator import RunCoordinator
from .errors import RunnerError

__all__ = ["RunCoordinator", "RunnerError"]
