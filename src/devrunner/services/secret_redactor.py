"""Display-safe rendering of external database secrets."""

import json
from dataclasses import dataclass, field
from typing import Dict, List
from urllib.parse import urlsplit, urlunsplit

from devrunner.errors import SecretParseWarning
from devrunner.models import SecretBundle

SQLDB_PREFIX = "sqldb::"


@dataclass
class RedactionResult:
    databases: Dict[str, str] = field(default_factory=dict)
    warnings: List[SecretParseWarning] = field(default_factory=list)


def strip_password(conn_string: str) -> str:
    """Drops the password from a URL, keeping the username and everything else."""
    parts = urlsplit(conn_string)
    # urlsplit is lenient; reading the port raises ValueError when it is malformed.
    _ = parts.port
    userinfo, at, hostinfo = parts.netloc.rpartition("@")
    if not at:
        return conn_string

    username = userinfo.partition(":")[0]
    netloc = f"{username}@{hostinfo}" if username else hostinfo
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class SecretRedactor:
    """Extracts ``sqldb::<name>`` connection strings without their passwords."""

    def __init__(self, logger):
        self.logger = logger

    def redact(self, secrets: SecretBundle) -> RedactionResult:
        result = RedactionResult()
        for key, value in secrets.items():
            if not key.startswith(SQLDB_PREFIX):
                continue
            name = key[len(SQLDB_PREFIX):]

            try:
                conn_string = self._connection_string(key, value)
                result.databases[name] = strip_password(conn_string)
            except SecretParseWarning as warning:
                self.logger.warning("Skipping database secret %s: %s", key, warning.reason)
                result.warnings.append(warning)
            except ValueError as exc:
                self.logger.warning("Failed to parse connection string for %s: %s", key, exc)
                result.warnings.append(SecretParseWarning(key, f"invalid connection string: {exc}"))

        return result

    def _connection_string(self, key: str, value: str) -> str:
        try:
            parsed = json.loads(value)
        except (TypeError, json.JSONDecodeError) as exc:
            raise SecretParseWarning(key, f"failed to unmarshal connection string: {exc}") from exc

        if not isinstance(parsed, dict):
            raise SecretParseWarning(key, "secret value is not a JSON object")
        conn_string = parsed.get("connection_string")
        if not isinstance(conn_string, str) or not conn_string:
            raise SecretParseWarning(key, "missing connection_string field")
        return conn_string
