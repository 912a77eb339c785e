"""Per-session output sink feeding the client stream."""

import logging
import threading
from typing import Callable, Iterable, List, Optional

from rich.console import Console

from devrunner.models import ErrorListMessage, ExitMessage, OutputMessage

Send = Callable[[object], None]


class StreamWriter:
    """File-like writer bound to one output channel of a StreamLog."""

    def __init__(self, stream_log: "StreamLog", channel: str, buffered: bool):
        self._stream_log = stream_log
        self.channel = channel
        self.buffered = buffered

    def write(self, text) -> int:
        data = text.encode("utf-8") if isinstance(text, str) else bytes(text)
        if data:
            self._stream_log.write(self.channel, data, buffered=self.buffered)
        return len(text)

    def flush(self):
        return None

    def isatty(self) -> bool:
        return False


class StreamLog:
    """Thread-safe output sink for a single run session.

    Writers created with ``buffered=True`` hold their output until
    ``flush_buffers`` is called, so application output cannot interleave
    with the startup banner. After the first flush every write goes straight
    to the stream. At most one exit message is ever sent, and it is last.
    """

    def __init__(
        self,
        send: Send,
        buffered: bool = True,
        color: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self._send = send
        self._buffering = buffered
        self._buffer: List[OutputMessage] = []
        self._lock = threading.Lock()
        self._exit_code: Optional[int] = None
        self.color = color
        self.logger = logger or logging.getLogger("devrunner")

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def closed(self) -> bool:
        return self._exit_code is not None

    def stdout(self, buffered: bool = True) -> StreamWriter:
        return StreamWriter(self, "stdout", buffered)

    def stderr(self, buffered: bool = True) -> StreamWriter:
        return StreamWriter(self, "stderr", buffered)

    def console(self, writer: Optional[StreamWriter] = None) -> Console:
        return Console(
            file=writer or self.stderr(buffered=False),
            force_terminal=self.color,
            no_color=not self.color,
            color_system="standard" if self.color else None,
            highlight=False,
            emoji=False,
            soft_wrap=True,
        )

    def write(self, channel: str, data: bytes, buffered: bool = False):
        message = OutputMessage(stream=channel, data=data)
        with self._lock:
            if self._exit_code is not None:
                self.logger.debug("Dropping %d bytes written after exit", len(data))
                return
            if buffered and self._buffering:
                self._buffer.append(message)
                return
            self._send(message)

    def flush_buffers(self):
        with self._lock:
            self._flush_locked()

    def send_errors(self, errors: Iterable[str]):
        with self._lock:
            if self._exit_code is not None:
                return
            self._flush_locked()
            self._send(ErrorListMessage(errors=tuple(errors)))

    def send_exit(self, code: int):
        with self._lock:
            if self._exit_code is not None:
                self.logger.warning(
                    "Ignoring exit code %s: session already exited with %s",
                    code,
                    self._exit_code,
                )
                return
            self._flush_locked()
            self._exit_code = code
            self._send(ExitMessage(code=code))

    def _flush_locked(self):
        pending, self._buffer = self._buffer, []
        self._buffering = False
        for message in pending:
            self._send(message)
