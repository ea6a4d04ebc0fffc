import threading
import time

import pytest

from zarr_tools.progress import Progress, ProgressStats


class _Recorder:
    def __init__(self):
        self.calls: list[ProgressStats] = []
        self._lock = threading.Lock()

    def __call__(self, stats):
        with self._lock:
            self.calls.append(stats)


class _FakeClock:
    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def test_callback_called_on_creation():
    recorder = _Recorder()
    Progress(5, recorder)
    assert len(recorder.calls) == 1
    assert recorder.calls[0].step == 0
    assert recorder.calls[0].num_steps == 5


def test_next_increments_and_reports():
    recorder = _Recorder()
    progress = Progress(3, recorder)
    progress.next()
    progress.next()
    assert [c.step for c in recorder.calls] == [0, 1, 2]
    assert progress.stats().step == 2
    assert progress.stats().num_steps == 3


def test_read_returns_result_and_accumulates(monkeypatch):
    monkeypatch.setattr(time, "perf_counter", _FakeClock(0.5))
    progress = Progress(1, _Recorder())
    assert progress.read(lambda: "data") == "data"
    assert progress.read(lambda: 7) == 7
    stats = progress.stats()
    assert stats.read == pytest.approx(1.0)
    assert stats.write == 0.0
    assert stats.process == 0.0


def test_write_and_process_accumulate_separately(monkeypatch):
    monkeypatch.setattr(time, "perf_counter", _FakeClock(0.25))
    progress = Progress(1, _Recorder())
    progress.write(lambda: None)
    progress.process(lambda: None)
    progress.process(lambda: None)
    stats = progress.stats()
    assert stats.write == pytest.approx(0.25)
    assert stats.process == pytest.approx(0.5)
    assert stats.read == 0.0


def test_process_step_grows_list(monkeypatch):
    monkeypatch.setattr(time, "perf_counter", _FakeClock(1.0))
    progress = Progress(1, _Recorder())
    assert progress.process_step(2, lambda: "x") == "x"
    progress.process_step(0, lambda: None)
    progress.process_step(2, lambda: None)
    steps = progress.stats().process_steps
    assert len(steps) == 3
    assert steps[0] == pytest.approx(1.0)
    assert steps[1] == 0.0
    assert steps[2] == pytest.approx(2.0)


def test_process_step_rejects_negative():
    progress = Progress(1, _Recorder())
    with pytest.raises(ValueError):
        progress.process_step(-1, lambda: None)


def test_exception_propagates_without_timing():
    progress = Progress(1, _Recorder())

    def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        progress.read(fail)
    assert progress.stats().read == 0.0


def test_next_is_thread_safe():
    recorder = _Recorder()
    progress = Progress(400, recorder)

    def work():
        for _ in range(100):
            progress.next()

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert progress.stats().step == 400
    assert len(recorder.calls) == 401