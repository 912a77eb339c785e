"""In-memory namespaces, one active namespace per app."""

import threading
from typing import Dict, List, Optional

from devrunner.errors import NamespaceResolutionError
from devrunner.errors_catalog import actionable_error
from devrunner.models import DEFAULT_NAMESPACE, App, Namespace


class NamespaceStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._namespaces: Dict[str, Dict[str, bool]] = {}

    def namespace_or_active(self, app: App, name: Optional[str]) -> Namespace:
        with self._lock:
            namespaces = self._for_app(app)
            if not name:
                active = next(ns for ns, is_active in namespaces.items() if is_active)
                return Namespace(name=active, active=True)

            if name not in namespaces:
                raise NamespaceResolutionError(actionable_error("unknown_namespace", name=name))
            return Namespace(name=name, active=namespaces[name])

    def create(self, app: App, name: str) -> Namespace:
        with self._lock:
            namespaces = self._for_app(app)
            namespaces.setdefault(name, False)
            return Namespace(name=name, active=namespaces[name])

    def activate(self, app: App, name: str) -> Namespace:
        with self._lock:
            namespaces = self._for_app(app)
            if name not in namespaces:
                raise NamespaceResolutionError(actionable_error("unknown_namespace", name=name))
            for existing in namespaces:
                namespaces[existing] = existing == name
            return Namespace(name=name, active=True)

    def list(self, app: App) -> List[Namespace]:
        with self._lock:
            return [Namespace(name=n, active=a) for n, a in sorted(self._for_app(app).items())]

    def _for_app(self, app: App) -> Dict[str, bool]:
        return self._namespaces.setdefault(app.platform_or_local_id, {DEFAULT_NAMESPACE: True})
