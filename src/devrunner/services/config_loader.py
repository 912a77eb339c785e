"""Configuration loader for devrunner."""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from devrunner.errors import ConfigLoadError
from devrunner.errors_catalog import actionable_error

APP_CONFIG_FILE = ".devrun.yml"
DAEMON_CONFIG_FILE = ".devrun-daemon.yml"

APP_CONFIG_KEYS = {
    "app_id",
    "browser",
    "command",
    "env",
    "experiments",
}

DAEMON_CONFIG_KEYS = {
    "dashboard_url",
    "mcp_url",
    "update_url",
    "upgrade_command",
    "first_run_delay",
    "verbose",
    "log_file",
}


class ConfigLoader:
    """Loads YAML configuration files for apps and the daemon."""

    def __init__(self, supported_keys: Iterable[str] = APP_CONFIG_KEYS):
        self.supported_keys = set(supported_keys)

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigLoadError(actionable_error("config_not_found", path=str(config_path)))

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigLoadError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigLoadError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.supported_keys)
        if unknown:
            unknown_list = ", ".join(str(key) for key in unknown)
            raise ConfigLoadError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def load_app(self, app_root: str) -> Dict[str, Any]:
        """Loads ``.devrun.yml`` from the app root; a missing file means defaults."""
        config_path = os.path.join(app_root, APP_CONFIG_FILE)
        if not os.path.exists(config_path):
            return {}

        config = self.load(config_path)
        self._validate_app_config(config)
        return config

    def _validate_app_config(self, config: Dict[str, Any]):
        command = config.get("command")
        if command is not None and not isinstance(command, (str, list)):
            raise ConfigLoadError("`command` must be a string or a list of arguments.")

        env = config.get("env")
        if env is not None and not isinstance(env, dict):
            raise ConfigLoadError("`env` must be a mapping of variable names to values.")

        experiments = config.get("experiments")
        if experiments is not None and not isinstance(experiments, list):
            raise ConfigLoadError("`experiments` must be a list of names.")
