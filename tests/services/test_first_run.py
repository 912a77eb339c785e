import threading

from devrunner.models import Gateway, OutputMessage, ProcGroup
from devrunner.services.first_run import FirstRunWatcher, render_first_run_guidance
from devrunner.services.stream_log import StreamLog


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


class FakeSession:
    def __init__(self, proc=None):
        self.id = "run-1"
        self.listen_addr = "localhost:4000"
        self.done = threading.Event()
        self._proc = proc
        self.proc_group_calls = 0

    def proc_group(self):
        self.proc_group_calls += 1
        return self._proc


def _proc(**meta):
    return ProcGroup(gateways={"api-gateway": Gateway("api-gateway", 42)}, meta=meta)


def _outputs(sent):
    return [m for m in sent if isinstance(m, OutputMessage)]


def test_completion_before_delay_emits_nothing():
    sent = []
    session = FakeSession(proc=_proc())
    session.done.set()
    watcher = FirstRunWatcher(logger=DummyLogger(), delay=5.0)

    assert watcher.watch(session, StreamLog(sent.append)) is False
    assert sent == []
    assert session.proc_group_calls == 0


def test_delay_before_completion_emits_guidance_once():
    sent = []
    session = FakeSession(proc=_proc())
    watcher = FirstRunWatcher(logger=DummyLogger(), delay=0.01)

    thread = watcher.start(session, StreamLog(sent.append))
    thread.join(timeout=5)
    session.done.set()

    assert not thread.is_alive()
    outputs = _outputs(sent)
    assert len(outputs) == 1
    assert b"curl http://localhost:4000/" in outputs[0].data


def test_guidance_skipped_without_process_group():
    sent = []
    watcher = FirstRunWatcher(logger=DummyLogger(), delay=0.01)

    assert watcher.watch(FakeSession(proc=None), StreamLog(sent.append)) is False
    assert sent == []


def test_guidance_mentions_missing_endpoints():
    text = render_first_run_guidance(FakeSession(), _proc(endpoints=0))

    assert "exposes no endpoints yet" in text
