import pytest
from conftest import ListSink

from appdeck.appstore.models import ProgressStatus
from appdeck.appstore.progress import ProgressReporter, is_pull_activity, pull_progress


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _reporter(sink, clock=None):
    return ProgressReporter(
        sink,
        app_id="web",
        container_name="web",
        name="Web",
        icon="icon.png",
        interval=0.2,
        clock=clock or FakeClock(),
    )


def test_pull_progress_is_capped():
    assert pull_progress(0) == pytest.approx(0.35)
    assert pull_progress(20) == pytest.approx(0.6)
    assert pull_progress(400) == 0.85


def test_pull_activity():
    assert is_pull_activity("anything on stderr", True)
    assert is_pull_activity("db Pull complete", False)
    assert not is_pull_activity("Network created", False)


@pytest.mark.asyncio
async def test_values_never_decrease():
    sink = ListSink()
    reporter = _reporter(sink)

    await reporter.report(0.5, "half")
    await reporter.report(0.2, "late event")
    await reporter.report(1.7, "overshoot")

    assert sink.values == [0.5, 0.5, 1.0]


@pytest.mark.asyncio
async def test_throttled_reports_are_dropped_within_interval():
    sink = ListSink()
    clock = FakeClock()
    reporter = _reporter(sink, clock)

    assert await reporter.report(0.35, "pull") is True
    clock.now += 0.1
    assert await reporter.report(0.4, "pull", throttle=True) is False
    clock.now += 0.15
    assert await reporter.report(0.45, "pull", throttle=True) is True
    assert await reporter.report(0.85, "start") is True

    assert sink.values == [0.35, 0.45, 0.85]


@pytest.mark.asyncio
async def test_terminal_event_is_sent_once():
    sink = ListSink()
    reporter = _reporter(sink)

    await reporter.report(0.4, "working")
    await reporter.fail("broken")
    await reporter.complete("done")
    assert await reporter.report(0.9, "ignored") is False

    assert sink.values == [0.4, 1.0]
    assert sink.events[-1].status == ProgressStatus.ERROR
    assert sink.events[-1].message == "broken"


@pytest.mark.asyncio
async def test_sink_failures_do_not_propagate():
    class BrokenSink:
        async def emit(self, event):
            raise RuntimeError("socket closed")

    reporter = _reporter(BrokenSink())

    assert await reporter.report(0.1, "still fine") is True
    await reporter.complete("done")
    assert reporter.finished is True
