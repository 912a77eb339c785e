"""In-process implementations of the run collaborators used by the CLI."""

from .apps import AppTracker
from .namespaces import NamespaceStore
from .run_manager import SubprocessRunManager
from .secrets import StaticSecretsStore

__all__ = ["AppTracker", "NamespaceStore", "StaticSecretsStore", "SubprocessRunManager"]
