import io
import threading

import pytest

from core.errors import ExtractionCancelled
from core.progress import (
    CancelEventObserver,
    ProgressBus,
    ProgressEvent,
    StageProgressMapper,
    TerminalProgressObserver,
)


def test_progress_bus_stage_and_dag_callbacks():
    events = []
    bus = ProgressBus().subscribe(lambda e: events.append(e))

    bus.stage_callback("extract")(55, "extracting")
    bus.dag_callback()(20, "Running: extract")

    assert len(events) == 2
    assert isinstance(events[0], ProgressEvent)
    assert events[0].channel == "stage"
    assert events[0].stage == "extract"
    assert events[0].percent == 55
    assert events[1].channel == "dag"
    assert events[1].stage is None
    assert events[1].percent == 20


def test_progress_is_clamped_and_unsubscribe_works():
    events = []
    observer = events.append
    bus = ProgressBus().subscribe(observer)
    bus.stage_callback("load")(250, "overflow")
    bus.unsubscribe(observer)
    bus.stage_callback("load")(10, "ignored")

    assert [e.percent for e in events] == [100]


def test_stage_progress_mapper():
    mapper = StageProgressMapper(["load", "build", "extract", "export"])
    assert mapper.map("load", 50) == 12
    assert mapper.map("build", 100) == 50
    assert mapper.map("export", 100) == 100
    assert mapper.map(None, 40) == 40


def test_cancel_event_observer_raises():
    cancel = threading.Event()
    bus = ProgressBus().subscribe(CancelEventObserver(cancel))
    cb = bus.stage_callback("load")

    cb(10, "loading")
    cancel.set()
    with pytest.raises(ExtractionCancelled):
        cb(20, "loading")


def test_terminal_observer_renders_bar():
    stream = io.StringIO()
    bus = ProgressBus().subscribe(TerminalProgressObserver(bar_width=10, stream=stream))
    bus.stage_callback("build")(100, "done")
    bus.dag_callback()(50, "Running: extract")

    text = stream.getvalue()
    assert "[build] [##########] 100%" in text
    assert "[DAG  50%] Running: extract" in text


def test_stage_progress_mapper_reaches_full_scale():
    mapper = StageProgressMapper(["load", "build", "iso", "extract", "postprocess", "export"])
    assert mapper.map("load", 0) == 0
    assert mapper.map("extract", 0) == 50
    assert mapper.map("export", 100) == 100
    assert mapper.map("unknown", 250) == 100


def test_terminal_observer_shows_pipeline_total():
    stream = io.StringIO()
    mapper = StageProgressMapper(["load", "build", "extract", "export"])
    bus = ProgressBus().subscribe(TerminalProgressObserver(bar_width=10, stream=stream, mapper=mapper))
    bus.stage_callback("extract")(50, "halfway")
    bus.stage_callback("export")(100, "done")

    text = stream.getvalue()
    assert "[extract] [#####.....]  50% (total  62%)" in text
    assert "[export] [##########] 100% (total 100%)" in text
