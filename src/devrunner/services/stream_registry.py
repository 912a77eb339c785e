"""Shared map of run id to output sink."""

import threading
from typing import Dict, Optional

from devrunner.errors import RegistryError
from devrunner.services.stream_log import StreamLog


class StreamRegistry:
    """Associates active run ids with their output sinks.

    One lock covers both the sink map and the active-session bookkeeping so a
    registration can never race with a scan of active sessions. The registry
    does not own the sinks.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._streams: Dict[str, StreamLog] = {}
        self._sessions: Dict[str, Optional[str]] = {}

    def register(self, run_id: str, sink: StreamLog, listen_addr: Optional[str] = None):
        with self._lock:
            if run_id in self._streams:
                raise RegistryError(f"Run {run_id} already has a registered stream.")
            self._streams[run_id] = sink
            self._sessions[run_id] = listen_addr

    def remove(self, run_id: str):
        with self._lock:
            self._streams.pop(run_id, None)
            self._sessions.pop(run_id, None)

    def lookup(self, run_id: str) -> Optional[StreamLog]:
        with self._lock:
            return self._streams.get(run_id)

    def active_sessions(self) -> Dict[str, Optional[str]]:
        with self._lock:
            return dict(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._streams
