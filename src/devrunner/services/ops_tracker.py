"""Progress reporting for long startup operations."""

import threading
import time
from typing import Dict, Optional

from rich.markup import escape


class OperationTracker:
    """Tracks named startup operations and reports them on the session stream."""

    def __init__(self, console):
        self.console = console
        self._lock = threading.Lock()
        self._ops: Dict[int, Dict[str, object]] = {}
        self._next_id = 0
        self._all_done = False

    def add(self, description: str) -> int:
        with self._lock:
            op_id = self._next_id
            self._next_id += 1
            if self._all_done:
                return op_id
            self._ops[op_id] = {"description": description, "started": time.monotonic()}
        self.console.print(f"  [dim]⠿ {escape(description)}...[/dim]")
        return op_id

    def done(self, op_id: int):
        op = self._finish(op_id)
        if op is not None:
            elapsed = time.monotonic() - op["started"]
            self.console.print(f"  [green]✔[/green] {escape(op['description'])}... Done ({elapsed:.1f}s)")

    def fail(self, op_id: int, error: Exception):
        op = self._finish(op_id)
        if op is not None:
            self.console.print(f"  [red]❌ {escape(op['description'])}... Failed: {escape(str(error))}[/red]")

    def all_done(self):
        """Stops reporting; operations still pending are dropped silently."""
        with self._lock:
            self._all_done = True
            self._ops.clear()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._ops)

    def _finish(self, op_id: int) -> Optional[Dict[str, object]]:
        with self._lock:
            return self._ops.pop(op_id, None)
