"""Tests for the aggregator barrier — registration, queued resolutions, violations."""
from __future__ import annotations

import itertools

import pytest

from aggregator import (
    ConsistencyViolation,
    ExistTrace,
    PlotTrace,
    RegisterTrace,
    RemoveTrace,
    parse_message,
)
from common.types import Point
from topology.streams import PLOT_TRACE_STREAM


def _p(x: float, y: float) -> Point:
    return Point(x=x, y=y)


# ---------- Registration ----------

class TestRegistration:
    def test_first_frame_is_seeded_implicitly(self, aggregator_factory):
        agg = aggregator_factory()
        assert agg.register(1, ["A"], 100, 100) is None
        state = agg.frame_state(1)
        assert state.monitored == {"A"}
        assert state.reporter_count == 1

    def test_unknown_frame_rejected(self, aggregator_factory):
        agg = aggregator_factory()
        with pytest.raises(ConsistencyViolation) as exc_info:
            agg.register(2, ["A"], 100, 100)
        assert exc_info.value.frame_id == 2

    def test_custom_first_frame(self, aggregator_factory):
        agg = aggregator_factory(first_frame_id=0)
        agg.register(0, ["A"], 100, 100)
        with pytest.raises(ConsistencyViolation):
            aggregator_factory(first_frame_id=0).register(1, ["A"], 100, 100)

    def test_waits_for_all_reporters(self, aggregator_factory, collector):
        agg = aggregator_factory(expected_reporters=3)
        agg.register(1, [], 100, 100, reporter=0)
        agg.register(1, [], 100, 100, reporter=1)
        assert collector.on_stream(PLOT_TRACE_STREAM) == []
        result = agg.register(1, [], 100, 100, reporter=2)
        assert result is not None
        assert result.frame_id == 1

    def test_empty_registration_finalizes_immediately(self, aggregator_factory, collector):
        agg = aggregator_factory()
        agg.register(1, [], 64, 48)
        assert collector.on_stream(PLOT_TRACE_STREAM) == [PlotTrace(frame_id=1, traces={})]

    def test_duplicate_reporter_rejected(self, aggregator_factory):
        agg = aggregator_factory(expected_reporters=2)
        agg.register(1, ["A"], 100, 100, reporter=5)
        with pytest.raises(ConsistencyViolation):
            agg.register(1, ["B"], 100, 100, reporter=5)
        assert agg.frame_state(1).monitored == {"A"}

    def test_more_registrations_than_reporters_rejected(self, aggregator_factory):
        agg = aggregator_factory(expected_reporters=1)
        agg.register(1, ["A"], 100, 100)
        with pytest.raises(ConsistencyViolation):
            agg.register(1, ["B"], 100, 100)

    def test_reregistering_finalized_frame_rejected(self, aggregator_factory):
        agg = aggregator_factory()
        agg.register(1, ["A"], 100, 100)
        agg.remove(1, "A")
        assert agg.last_closed == 1
        with pytest.raises(ConsistencyViolation):
            agg.register(1, ["A"], 100, 100)

    def test_width_height_from_first_report(self, aggregator_factory):
        agg = aggregator_factory(expected_reporters=2)
        agg.register(1, ["A"], 320, 240, reporter=0)
        agg.register(1, ["B"], 640, 480, reporter=1)
        state = agg.frame_state(1)
        assert (state.width, state.height) == (320, 240)


# ---------- Resolution ----------

class TestResolution:
    def test_resolution_before_registration_is_queued(self, aggregator_factory, collector):
        agg = aggregator_factory()
        assert agg.update(1, "A", _p(1, 1)) is None
        state = agg.frame_state(1)
        assert not state.seeded
        assert len(state.pending) == 1

        result = agg.register(1, ["A"], 100, 100)
        assert result is not None
        assert result.traces == {"A": [_p(1, 1)]}

    def test_resolutions_wait_for_all_reporters(self, aggregator_factory):
        agg = aggregator_factory(expected_reporters=2)
        agg.register(1, ["A"], 100, 100, reporter=0)
        agg.update(1, "A", _p(1, 1))
        state = agg.frame_state(1)
        assert state.monitored == {"A"}
        assert len(state.pending) == 1

    def test_unmonitored_trace_rejected(self, aggregator_factory):
        agg = aggregator_factory()
        agg.register(1, ["A"], 100, 100)
        with pytest.raises(ConsistencyViolation) as exc_info:
            agg.update(1, "Z", _p(1, 1))
        assert exc_info.value.trace_id == "Z"
        # The frame is still usable.
        assert agg.update(1, "A", _p(2, 2)) is not None

    def test_double_resolution_rejected(self, aggregator_factory):
        agg = aggregator_factory()
        agg.register(1, ["A", "B"], 100, 100)
        agg.update(1, "A", _p(1, 1))
        with pytest.raises(ConsistencyViolation):
            agg.remove(1, "A")

    def test_queued_violation_does_not_block_other_messages(self, aggregator_factory, collector):
        agg = aggregator_factory()
        agg.update(1, "ghost", _p(0, 0))
        agg.update(1, "A", _p(3, 3))
        with pytest.raises(ConsistencyViolation) as exc_info:
            agg.register(1, ["A"], 100, 100)
        assert exc_info.value.trace_id == "ghost"
        assert collector.on_stream(PLOT_TRACE_STREAM) == [
            PlotTrace(frame_id=1, traces={"A": [_p(3, 3)]})
        ]

    def test_late_message_for_closed_frame_rejected(self, aggregator_factory):
        agg = aggregator_factory()
        agg.register(1, ["A"], 100, 100)
        agg.update(1, "A", _p(1, 1))
        with pytest.raises(ConsistencyViolation):
            agg.update(1, "A", _p(2, 2))

    def test_messages_for_next_frame_wait_for_seed(self, aggregator_factory):
        agg = aggregator_factory()
        agg.register(1, ["A"], 100, 100)
        agg.update(2, "A", _p(5, 5))
        assert not agg.frame_state(2).seeded

        agg.update(1, "A", _p(4, 4))
        assert agg.frame_state(2).monitored == {"A"}

        result = agg.register(2, [], 100, 100)
        assert result.frame_id == 2
        assert result.traces == {"A": [_p(4, 4), _p(5, 5)]}


# ---------- Ordering ----------

def test_finalization_is_order_independent(aggregator_factory, collector):
    messages = [
        RegisterTrace(frame_id=1, trace_ids=["A", "C"], width=100, height=100, reporter=0),
        RegisterTrace(frame_id=1, trace_ids=["B"], width=100, height=100, reporter=1),
        ExistTrace(frame_id=1, trace_id="A", point=_p(10, 10)),
        RemoveTrace(frame_id=1, trace_id="B"),
        ExistTrace(frame_id=1, trace_id="C", point=_p(20, 30)),
    ]
    expected = {"A": [_p(10, 10)], "C": [_p(20, 30)]}

    for order in itertools.permutations(messages):
        collector.clear()
        agg = aggregator_factory(expected_reporters=2)
        results = [agg.handle(m) for m in order]

        assert all(r is None for r in results[:-1])
        assert results[-1].traces == expected
        assert collector.on_stream(PLOT_TRACE_STREAM) == [PlotTrace(frame_id=1, traces=expected)]
        assert agg.frame_state(2).monitored == {"A", "C"}


# ---------- Wire messages ----------

class TestParseMessage:
    def test_register(self):
        message = parse_message(
            '{"kind": "register", "frame_id": 3, "trace_ids": ["a"], "width": 10, "height": 20}'
        )
        assert isinstance(message, RegisterTrace)
        assert message.trace_ids == ["a"]
        assert message.reporter is None

    def test_exist(self):
        message = parse_message({"kind": "exist", "frame_id": 3, "trace_id": "a", "point": {"x": 1, "y": 2}})
        assert isinstance(message, ExistTrace)
        assert message.point == _p(1.0, 2.0)

    def test_remove(self):
        message = parse_message(b'{"kind": "remove", "frame_id": 3, "trace_id": "a"}')
        assert isinstance(message, RemoveTrace)

    def test_unknown_kind(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            parse_message('{"kind": "teleport", "frame_id": 3}')
