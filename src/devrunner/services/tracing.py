"""Run trace output: JSON lines describing each step of a session."""

import json
import os
import threading
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional

from devrunner.errors import TracingInitError


class Tracer:
    """Writes step events for one session; ``close`` is safe to call twice."""

    def __init__(self, logger, file_obj: Optional[IO[str]] = None, path: Optional[str] = None):
        self.logger = logger
        self.path = path
        self._file = file_obj
        self._lock = threading.Lock()
        self._started: Dict[str, datetime] = {}
        self.closed = False

    @property
    def enabled(self) -> bool:
        return self._file is not None

    def event(self, name: str, **fields: Any):
        if self._file is None:
            return
        record = {"event": name, "time": self._now().isoformat()}
        record.update(fields)
        with self._lock:
            if self.closed:
                return
            try:
                self._file.write(json.dumps(record, sort_keys=True, default=str))
                self._file.write("\n")
                self._file.flush()
            except (OSError, ValueError) as exc:
                self.logger.warning("Could not write trace file '%s': %s", self.path, exc)

    def step_started(self, step_name: str, details: Optional[Dict[str, Any]] = None):
        self._started[step_name] = self._now()
        self.event("step_started", step=step_name, details=details or {})

    def step_finished(self, step_name: str, status: str, error: Optional[str] = None):
        started_at = self._started.pop(step_name, None)
        duration = (self._now() - started_at).total_seconds() if started_at else None
        self.event(
            "step_finished",
            step=step_name,
            status=status,
            error=error,
            duration_seconds=duration,
        )

    def close(self):
        with self._lock:
            if self.closed:
                return
            self.closed = True
            if self._file is not None:
                try:
                    self._file.close()
                except OSError as exc:
                    self.logger.warning("Could not close trace file '%s': %s", self.path, exc)

    def __enter__(self) -> "Tracer":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)


class TracingService:
    """Opens a tracer for a session when a trace file is requested."""

    def __init__(self, logger):
        self.logger = logger

    def begin(self, app_root: str, working_dir: str, trace_file: Optional[str]) -> Tracer:
        if not trace_file:
            return Tracer(self.logger)

        path = trace_file
        if not os.path.isabs(path):
            path = os.path.join(working_dir or app_root, path)

        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            file_obj = open(path, "a", encoding="utf-8")
        except OSError as exc:
            raise TracingInitError(f"could not open trace file '{path}': {exc}") from exc

        tracer = Tracer(self.logger, file_obj=file_obj, path=path)
        tracer.event("session_started", app_root=app_root, working_dir=working_dir)
        return tracer
