import io
import socket
import sys
import threading

import pytest
from rich.console import Console

from devrunner.errors import RunStartError
from devrunner.local.run_manager import SubprocessRunManager, parse_environ
from devrunner.models import App, BrowserMode, Namespace, OutputMessage, StartParams
from devrunner.services.ops_tracker import OperationTracker
from devrunner.services.stream_log import StreamLog


@pytest.fixture
def listener():
    sock = socket.create_server(("127.0.0.1", 0))
    try:
        yield sock
    finally:
        sock.close()


def _params(tmp_path, listener, command, **kwargs):
    sent = []
    params = StartParams(
        app=App(root=str(tmp_path), local_id="demo-abc123"),
        namespace=Namespace(name="default", active=True),
        working_dir=".",
        listener=listener,
        listen_addr=f"127.0.0.1:{listener.getsockname()[1]}",
        sink=StreamLog(sent.append),
        ops=OperationTracker(Console(file=io.StringIO())),
        command=command,
        **kwargs,
    )
    return params, sent


def _stream_text(sent, stream):
    return b"".join(m.data for m in sent if isinstance(m, OutputMessage) and m.stream == stream).decode()


def test_parse_environ_collects_invalid_entries():
    assert parse_environ(["A=1", "B=x=y"]) == {"A": "1", "B": "x=y"}

    with pytest.raises(RunStartError) as exc_info:
        parse_environ(["NOEQUALS", "=value"])

    assert len(exc_info.value.errors) == 2


def test_start_runs_command_with_inherited_listener(tmp_path, listener):
    script = (
        "import os, socket, sys\n"
        "sock = socket.socket(fileno=int(os.environ['LISTEN_FD']))\n"
        "print('port', os.environ['PORT'], sock.getsockname()[1])\n"
        "print('greeting', os.environ['GREETING'], os.environ['DEVRUN_NAMESPACE'])\n"
        "sys.stderr.write('warming up\\n')\n"
    )
    params, sent = _params(
        tmp_path,
        listener,
        [sys.executable, "-c", script],
        environ=("GREETING=hello",),
    )
    manager = SubprocessRunManager(open_browser=lambda _url: None)

    run = manager.start(params, threading.Event())

    assert run.done.wait(10)
    params.sink.flush_buffers()
    port = listener.getsockname()[1]
    assert f"port {port} {port}" in _stream_text(sent, "stdout")
    assert "greeting hello default" in _stream_text(sent, "stdout")
    assert "warming up" in _stream_text(sent, "stderr")
    assert run.proc_group().gateways["api-gateway"].pid == run.process.pid


def test_close_stops_running_process(tmp_path, listener):
    params, _ = _params(tmp_path, listener, [sys.executable, "-c", "import time; time.sleep(30)"])
    run = SubprocessRunManager(open_browser=lambda _url: None).start(params, threading.Event())

    run.close()
    run.close()

    assert run.done.wait(10)


def test_start_without_command_fails(tmp_path, listener):
    params, _ = _params(tmp_path, listener, None)

    with pytest.raises(RunStartError, match="No run command configured"):
        SubprocessRunManager().start(params, threading.Event())


def test_start_with_missing_binary_fails(tmp_path, listener):
    params, _ = _params(tmp_path, listener, ["devrunner-definitely-missing-binary"])

    with pytest.raises(RunStartError, match="Required command not found"):
        SubprocessRunManager().start(params, threading.Event())


def test_browser_opened_for_local_only_on_loopback(tmp_path, listener):
    opened = []
    params, _ = _params(
        tmp_path,
        listener,
        [sys.executable, "-c", "pass"],
        browser=BrowserMode.LOCAL_ONLY,
    )
    manager = SubprocessRunManager(dash_base_url="http://localhost:9400/", open_browser=opened.append)

    run = manager.start(params, threading.Event())
    run.done.wait(10)

    assert opened == ["http://localhost:9400/demo-abc123"]
