"""Tracks application roots on the local machine."""

import hashlib
import os
import threading
from typing import Dict

from devrunner.errors import AppResolutionError, ConfigLoadError
from devrunner.errors_catalog import actionable_error
from devrunner.models import App
from devrunner.services.config_loader import ConfigLoader


class AppTracker:
    """Resolves an app root directory to a stable ``App`` handle."""

    def __init__(self, config_loader: ConfigLoader = None):
        self.config_loader = config_loader or ConfigLoader()
        self._lock = threading.Lock()
        self._apps: Dict[str, App] = {}

    def track(self, app_root: str) -> App:
        root = os.path.realpath(app_root)
        if not os.path.isdir(root):
            raise AppResolutionError(actionable_error("app_root_missing", path=app_root))

        with self._lock:
            app = self._apps.get(root)
            if app is not None:
                return app

        try:
            config = self.config_loader.load_app(root)
        except ConfigLoadError as exc:
            raise AppResolutionError(str(exc)) from exc

        app = App(
            root=root,
            local_id=self.local_id(root),
            platform_id=str(config["app_id"]) if config.get("app_id") else None,
        )
        with self._lock:
            return self._apps.setdefault(root, app)

    @staticmethod
    def local_id(root: str) -> str:
        digest = hashlib.sha256(root.encode("utf-8")).hexdigest()[:6]
        name = os.path.basename(root.rstrip(os.sep)) or "app"
        return f"{name}-{digest}"
