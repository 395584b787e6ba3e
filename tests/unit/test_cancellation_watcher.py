import logging
import threading

import pytest

from singlestore_cdc.cdc.watcher import CancellationWatcher, RunningFlag


@pytest.mark.unit
def test_running_flag_is_level_triggered():
    flag = RunningFlag()
    assert flag.is_running()

    flag.stop()
    flag.stop()

    assert not flag.is_running()
    assert flag.wait_stopped(0)


@pytest.mark.unit
def test_watcher_cancels_once_flag_clears():
    flag = RunningFlag()
    cancelled = threading.Event()
    calls = []

    def cancel():
        calls.append(1)
        cancelled.set()

    watcher = CancellationWatcher(flag, cancel, poll_interval=0.01).start()
    flag.stop()

    assert cancelled.wait(2)
    watcher.join(2)
    assert watcher.fired
    assert calls == [1]


@pytest.mark.unit
def test_watcher_stopped_first_never_fires():
    flag = RunningFlag()
    calls = []
    watcher = CancellationWatcher(flag, lambda: calls.append(1), poll_interval=0.01)
    watcher.start()

    watcher.stop()
    watcher.join(2)
    flag.stop()

    assert not watcher.fired
    assert calls == []


@pytest.mark.unit
def test_watcher_logs_failed_cancel(caplog):
    flag = RunningFlag()
    flag.stop()

    def cancel():
        raise RuntimeError("socket closed")

    with caplog.at_level(logging.ERROR, logger="singlestore_cdc.cdc.watcher"):
        watcher = CancellationWatcher(flag, cancel, poll_interval=0.01).start()
        watcher.join(2)

    assert watcher.fired
    assert "failed to cancel" in caplog.text


@pytest.mark.unit
def test_watcher_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        CancellationWatcher(RunningFlag(), lambda: None, poll_interval=0)
