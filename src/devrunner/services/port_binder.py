"""Listener binding with free-port suggestions."""

import errno
import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from devrunner.errors import PortBindError
from devrunner.errors_catalog import actionable_error

# EADDRINUSE differs per platform; 10048 is WSAEADDRINUSE on Windows.
ADDR_IN_USE_ERRNOS = {errno.EADDRINUSE, 10048}
LOOPBACK_HOSTS = {"", "localhost", "127.0.0.1", "::1", "0.0.0.0", "::"}


@dataclass
class BoundListener:
    socket: socket.socket
    host: str
    port: int
    display_addr: str

    def close(self):
        try:
            self.socket.close()
        except OSError:
            pass


def split_host_port(listen_addr: str) -> Tuple[str, int]:
    """Splits ``host:port``, ``:port`` and ``[v6]:port`` addresses."""
    host, sep, port_str = listen_addr.rpartition(":")
    if not sep or not port_str.isdigit():
        raise ValueError(actionable_error("invalid_listen_addr", addr=listen_addr))
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(actionable_error("invalid_listen_addr", addr=listen_addr))

    port = int(port_str)
    if port > 65535:
        raise ValueError(actionable_error("invalid_listen_addr", addr=listen_addr))
    return host, port


def join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def display_listen_addr(listen_addr: str) -> str:
    """Renders an interface-less address as ``localhost:port``."""
    if listen_addr.startswith(":"):
        return "localhost" + listen_addr
    return listen_addr


def is_loopback_host(host: str) -> bool:
    return host in LOOPBACK_HOSTS or host.startswith("127.")


def is_addr_in_use(exc: OSError) -> bool:
    return exc.errno in ADDR_IN_USE_ERRNOS or "Address already in use" in str(exc)


class PortBinder:
    """Binds the run listener and suggests alternatives when it is taken."""

    def __init__(self, logger, probe_limit: int = 10, backlog: int = 128):
        self.logger = logger
        self.probe_limit = probe_limit
        self.backlog = backlog

    def bind(self, listen_addr: str) -> BoundListener:
        try:
            host, port = split_host_port(listen_addr)
        except ValueError as exc:
            raise PortBindError(listen_addr, exc) from exc

        try:
            sock = self._listen(host, port)
        except OSError as exc:
            in_use = is_addr_in_use(exc)
            suggestion = self.find_available_addr(host, port) if in_use else None
            self.logger.debug(
                "Bind of %s failed (in_use=%s, suggestion=%s): %s",
                listen_addr,
                in_use,
                suggestion,
                exc,
            )
            raise PortBindError(listen_addr, exc, in_use=in_use, suggestion=suggestion) from exc

        bound_port = sock.getsockname()[1]
        display = display_listen_addr(join_host_port(host, bound_port))
        self.logger.debug("Listening on %s", display)
        return BoundListener(socket=sock, host=host, port=bound_port, display_addr=display)

    def find_available_addr(self, host: str, port: int) -> Optional[Tuple[str, int]]:
        """Scans the next ports on ``host`` and returns the first bindable one.

        The scan is bounded by ``probe_limit``; the probe socket is closed
        immediately so the caller decides whether to use the suggestion.
        """
        display_host = host or "localhost"
        for candidate in range(port + 1, min(port + 1 + self.probe_limit, 65536)):
            try:
                probe = self._listen(host, candidate)
            except OSError:
                continue
            probe.close()
            return display_host, candidate
        return None

    def _listen(self, host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        return socket.create_server((host, port), family=family, backlog=self.backlog)
