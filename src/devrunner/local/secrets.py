"""Secrets provided up front, for example from the daemon's environment."""

from typing import Dict, Iterable, Mapping, Optional

from devrunner.models import App


class _AppSecrets:
    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def get(self, selector: Optional[Iterable[str]] = None) -> Dict[str, str]:
        if selector is None:
            return dict(self._values)
        wanted = set(selector)
        return {key: value for key, value in self._values.items() if key in wanted}


class StaticSecretsStore:
    """Serves the same secret values to every app unless overridden per app."""

    def __init__(
        self,
        values: Optional[Mapping[str, str]] = None,
        per_app: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self.values = dict(values or {})
        self.per_app = {app_id: dict(app_values) for app_id, app_values in (per_app or {}).items()}

    def load(self, app: App) -> _AppSecrets:
        merged = dict(self.values)
        merged.update(self.per_app.get(app.platform_or_local_id, {}))
        return _AppSecrets(merged)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str], prefix: str = "DEVRUN_SECRET_") -> "StaticSecretsStore":
        """Maps ``DEVRUN_SECRET_SQLDB__ORDERS`` style variables to ``sqldb::orders`` keys."""
        values = {}
        for name, value in environ.items():
            if not name.startswith(prefix):
                continue
            key = name[len(prefix):].lower().replace("__", "::", 1)
            values[key] = value
        return cls(values)
