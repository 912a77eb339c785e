"""Actionable error catalog for devrunner."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "config_not_found": {
        "what": "Config file not found: {path}",
        "next": "Check the path passed to `--config` or remove the option.",
    },
    "invalid_listen_addr": {
        "what": "Invalid listen address `{addr}`.",
        "next": "Use `host:port` or `:port`, for example `--listen=127.0.0.1:4000`.",
    },
    "unknown_namespace": {
        "what": "Namespace `{name}` does not exist.",
        "next": "Create the namespace first or run without `--namespace`.",
    },
    "app_root_missing": {
        "what": "Application root not found: {path}",
        "next": "Run from inside the application directory or pass `--app-root`.",
    },
    "missing_run_command": {
        "what": "No run command configured for {app}.",
        "next": "Add a `command` entry to `.devrun.yml` in the application root.",
    },
    "update_check_failed": {
        "what": "Could not check for updates at {url}.",
        "next": "Verify `update_url` or your network connection.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
