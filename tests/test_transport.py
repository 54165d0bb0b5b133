"""
Tests for engine.transport: playback state machine, stale responses, timers.
"""

import logging

from conftest import RecordingRenderer, ScriptedSource, _make_records
from timeline_replay.engine.scheduler import ReplayConfig
from timeline_replay.engine.timers import TimerKind
from timeline_replay.engine.transport import TransportController, stop_reason_for
from timeline_replay.errors import MalformedResponse, NotFound, OutOfRange, Unreachable
from timeline_replay.types import Direction, Mode, StopReason


def _make_transport(loop, renderer, dues=(0, 1000, 3000), cfg=ReplayConfig(), **source_kwargs):
    source = ScriptedSource(_make_records(dues), loop, **source_kwargs)
    t = TransportController(source, renderer, cfg, loop=loop, local_ms=loop.now_ms)
    return t, source


def _no_live_timers(t) -> bool:
    return all(n == 0 for n in t.live_timers().values())


class TestStartAndPlay:
    def test_plays_at_due_times_then_ends(self, loop, renderer):
        t, _ = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        assert renderer.indexes == [0]

        loop.advance(999)
        assert renderer.indexes == [0]
        loop.advance(1)
        assert renderer.indexes == [0, 1]
        assert renderer.times[1] >= 1000

        loop.advance(1999)
        assert renderer.indexes == [0, 1]
        loop.advance(1)
        assert renderer.indexes == [0, 1, 2]
        assert renderer.times[2] >= 3000

        assert t.state.mode == Mode.STOPPED
        assert t.state.stop_reason == StopReason.END_OF_TIMELINE
        assert t.state.current_index == 2
        assert _no_live_timers(t)

    def test_evenly_spaced_run(self, loop, renderer):
        t, _ = _make_transport(loop, renderer, dues=(0, 1000, 2000))
        t.start()
        loop.advance(2500)
        assert renderer.indexes == [0, 1, 2]
        assert renderer.times == [0, 1000, 2000]
        assert t.state.stop_reason == StopReason.END_OF_TIMELINE

    def test_shows_are_late_by_at_most_one_poll_interval(self, loop, renderer):
        t, _ = _make_transport(loop, renderer, dues=(0, 250, 2600, 2700), cfg=ReplayConfig(poll_interval_ms=1000))
        t.start()
        loop.advance(5000)
        assert renderer.indexes == [0, 1, 2, 3]
        for (when, req), due in zip(renderer.shown, (0, 250, 2600, 2700)):
            assert due - 100 <= when <= due + 1000

    def test_direct_mode_without_polling(self, loop, renderer):
        t, _ = _make_transport(loop, renderer, cfg=ReplayConfig(poll_interval_ms=None))
        t.start()
        loop.advance(4000)
        assert renderer.indexes == [0, 1, 2]
        assert t.state.stop_reason == StopReason.END_OF_TIMELINE

    def test_start_when_already_playing_is_noop(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        gen = t.generation
        t.start()
        loop.run_ready()
        assert t.generation == gen
        assert renderer.indexes == [0]

    def test_start_at_target_time_seeks(self, loop, renderer):
        t, _ = _make_transport(loop, renderer, dues=(0, 1000, 3000, 4000))
        t.start(target_local_ms=2500)
        loop.run_ready()
        assert renderer.indexes == []
        assert t.state.mode == Mode.PLAYING
        assert t.state.buffered_event is not None
        assert t.state.buffered_event.index == 2

        loop.advance(3000)
        assert renderer.indexes[0] == 2
        assert renderer.times[0] >= 3000

    def test_start_past_last_event_is_not_found(self, loop, renderer):
        t, _ = _make_transport(loop, renderer)
        t.start(target_local_ms=10_000)
        loop.run_ready()
        assert t.state.mode == Mode.STOPPED
        assert t.state.stop_reason == StopReason.NOT_FOUND
        assert t.state.current_index == -1

    def test_until_window_ends_early(self, loop, renderer):
        t, _ = _make_transport(loop, renderer)
        t.start(until_local_ms=1500)
        loop.advance(5000)
        assert renderer.indexes == [0, 1]
        assert t.state.stop_reason == StopReason.END_OF_TIMELINE


class TestClockReconciliation:
    def test_remote_clock_ahead(self, loop, renderer):
        # remote clock reads 5 s ahead of the local one
        t, _ = _make_transport(loop, renderer, dues=(5000, 6000), clock_skew_ms=5000)
        t.start()
        loop.run_ready()
        assert t.reconciler.offset_ms == 5000
        assert renderer.times == [0]
        loop.advance(1000)
        assert renderer.indexes == [0, 1]
        assert renderer.times == [0, 1000]

    def test_target_time_goes_through_offset(self, loop, renderer):
        t, _ = _make_transport(loop, renderer, dues=(5000, 6000, 7000), clock_skew_ms=5000)
        t.start(target_local_ms=500)
        loop.run_ready()
        assert t.state.buffered_event.index == 1

    def test_source_without_clock_trusts_local(self, loop, renderer, caplog):
        t, _ = _make_transport(loop, renderer, has_clock=False)
        with caplog.at_level(logging.WARNING, logger="timeline_replay"):
            t.start()
            loop.run_ready()
        assert renderer.indexes == [0]
        assert not t.reconciler.sampled
        assert "no clock" in caplog.text

    def test_reconnect_resamples(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        assert t.reconciler.offset_ms == 0
        source.clock_skew_ms = 250
        t.reconnect()
        loop.run_ready()
        assert t.reconciler.offset_ms == 250
        assert t.count == 3


class TestStaleResponses:
    def test_superseded_fetch_is_discarded(self, loop, renderer, caplog):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        gate = source.hold(1)
        loop.advance(1000)
        assert renderer.indexes == [0]

        # the step re-requests index 1 under a new generation
        t.step_forward()
        loop.run_ready()
        assert renderer.indexes == [0, 1]

        with caplog.at_level(logging.INFO, logger="timeline_replay.transport"):
            gate.open()
            loop.run_ready()
        assert renderer.indexes == [0, 1]
        assert "discarding stale response" in caplog.text

    def test_held_fetch_after_stop_never_renders(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        gate = source.hold(1)
        loop.advance(1000)
        t.stop()
        gate.open()
        loop.advance(5000)
        assert renderer.indexes == [0]
        assert t.state.mode == Mode.STOPPED
        assert t.state.stop_reason == StopReason.USER_REQUESTED


class TestFailures:
    def test_not_found_mid_play_stops(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        source.missing.add(1)
        t.start()
        loop.advance(2000)
        assert renderer.indexes == [0]
        assert t.state.mode == Mode.STOPPED
        assert t.state.stop_reason == StopReason.NOT_FOUND
        assert t.state.current_index == 0
        assert _no_live_timers(t)

    def test_unreachable_on_start(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        source.fail_with = Unreachable("connection refused")
        t.start()
        loop.run_ready()
        assert t.state.stop_reason == StopReason.UNREACHABLE
        assert t.state.stop_reason.category == "data error"
        assert "connection refused" in t.state.stop_detail

    def test_renderer_failure_stops_without_timers(self, loop):
        r = RecordingRenderer(loop, fail_on=(1,))
        t, _ = _make_transport(loop, r)
        t.start()
        loop.advance(2000)
        assert r.indexes == [0]
        assert t.state.stop_reason == StopReason.RENDER_FAILED
        assert t.state.current_index == 0
        assert _no_live_timers(t)

    def test_malformed_fetch_mid_play_stops_and_logs_error(self, loop, renderer, caplog):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        source.fail_with = MalformedResponse("missing 'target'", payload={"index": 1})
        with caplog.at_level(logging.INFO, logger="timeline_replay.transport"):
            loop.advance(2000)
        assert renderer.indexes == [0]
        assert t.state.mode == Mode.STOPPED
        assert t.state.stop_reason == StopReason.MALFORMED_RESPONSE
        assert t.state.current_index == 0
        assert "missing 'target'" in t.state.stop_detail
        errors = [r for r in caplog.records if r.levelno == logging.ERROR and "malformed response" in r.getMessage()]
        assert len(errors) == 1
        assert _no_live_timers(t)

    def test_not_found_is_not_logged_as_error(self, loop, renderer, caplog):
        t, source = _make_transport(loop, renderer)
        source.missing.add(1)
        t.start()
        with caplog.at_level(logging.INFO, logger="timeline_replay.transport"):
            loop.advance(2000)
        assert t.state.stop_reason == StopReason.NOT_FOUND
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_wrong_index_answer_is_malformed(self, loop, renderer):
        class _Shifted(ScriptedSource):
            async def fetch(self, index, *, until_epoch_ms=None):
                return self.event_at(min(index + 1, 2), until_epoch_ms)

        source = _Shifted(_make_records((0, 1000, 3000)), loop)
        t = TransportController(source, renderer, loop=loop, local_ms=loop.now_ms)
        t.start()
        loop.run_ready()
        assert renderer.indexes == []
        assert t.state.stop_reason == StopReason.MALFORMED_RESPONSE
        assert _no_live_timers(t)

    def test_stop_reason_mapping(self):
        assert stop_reason_for(NotFound("x")) == StopReason.NOT_FOUND
        assert stop_reason_for(OutOfRange(5, 3)) == StopReason.OUT_OF_RANGE
        assert stop_reason_for(MalformedResponse("x")) == StopReason.MALFORMED_RESPONSE
        assert stop_reason_for(Unreachable("x")) == StopReason.UNREACHABLE
        assert stop_reason_for(RuntimeError("x")) == StopReason.UNREACHABLE


class TestStepping:
    def _played_to_end(self, loop, renderer, dues=(0, 1000, 2000, 3000, 4000)):
        t, source = _make_transport(loop, renderer, dues=dues)
        t.start()
        loop.advance(10_000)
        assert t.state.stop_reason == StopReason.END_OF_TIMELINE
        return t, source

    def test_steps_ignored_while_idle(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        for cmd in (t.step_forward, t.step_backward, t.fast_forward, t.fast_backward):
            cmd()
        loop.advance(1000)
        assert t.state.mode == Mode.IDLE
        assert source.fetches == []

    def test_reverse_plays_back_to_start(self, loop, renderer):
        t, _ = self._played_to_end(loop, renderer)
        renderer.shown.clear()
        t.step_backward()
        loop.advance(2000)
        assert renderer.indexes == [3, 2, 1, 0]
        assert t.state.direction == Direction.REVERSE
        assert t.state.stop_reason == StopReason.START_OF_TIMELINE
        assert t.state.stop_reason.category == "start"

    def test_fast_backward_skips_one(self, loop, renderer):
        t, _ = self._played_to_end(loop, renderer)
        renderer.shown.clear()
        t.fast_backward()
        loop.run_ready()
        assert renderer.indexes == [2]

    def test_step_backward_at_zero_is_noop(self, loop, renderer):
        t, _ = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        t.stop()
        gen = t.generation
        t.step_backward()
        t.fast_backward()
        assert t.generation == gen
        assert t.state.mode == Mode.STOPPED

    def test_step_forward_past_end_stops_out_of_range(self, loop, renderer):
        t, _ = self._played_to_end(loop, renderer)
        t.step_forward()
        loop.run_ready()
        assert t.state.stop_reason == StopReason.OUT_OF_RANGE
        assert t.state.current_index == 4

    def test_fast_forward_near_end_is_noop(self, loop, renderer):
        t, _ = self._played_to_end(loop, renderer)
        t.fast_forward()
        assert t.state.stop_reason == StopReason.END_OF_TIMELINE

    def test_index_stays_in_range_under_any_sequence(self, loop, renderer):
        t, _ = _make_transport(loop, renderer, dues=(0, 100, 200, 300))
        t.start()
        loop.run_ready()
        cmds = [t.fast_forward, t.step_forward, t.step_forward, t.fast_backward, t.step_backward,
                t.step_backward, t.fast_backward, t.stop, t.fast_forward, t.step_forward, t.step_forward]
        for i in range(40):
            cmds[(i * 7) % len(cmds)]()
            loop.advance(50 * (i % 4))
            assert -1 <= t.state.current_index < 4
            assert all(n <= 1 for n in t.live_timers().values())
            assert len(loop.pending()) <= 3 + len([x for x in loop.tasks if not x.done()])


class TestStopAndReset:
    def test_stop_twice_equals_once(self, loop, renderer, caplog):
        t, _ = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        with caplog.at_level(logging.INFO, logger="timeline_replay.transport"):
            t.stop()
            snapshot = (t.state.mode, t.state.stop_reason, t.state.current_index, t.generation)
            t.stop()
        assert (t.state.mode, t.state.stop_reason, t.state.current_index, t.generation) == snapshot
        assert sum("stopped:" in r.getMessage() for r in caplog.records) == 1
        assert _no_live_timers(t)

    def test_stop_cancels_poll(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        assert t.live_timers()[TimerKind.FETCH] == 1
        t.stop()
        n = len(source.fetches)
        loop.advance(5000)
        assert len(source.fetches) == n

    def test_reset_returns_to_idle(self, loop, renderer):
        t, _ = _make_transport(loop, renderer)
        t.start()
        loop.advance(1000)
        t.reset()
        assert t.state.mode == Mode.IDLE
        assert t.state.current_index == -1
        assert t.count is None
        assert not t.reconciler.sampled
        assert _no_live_timers(t)

    def test_reset_during_reconnect_forgets_clock_and_count(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        source.clock_skew_ms = 250
        gate = source.hold_clock()
        t.reconnect()
        loop.run_ready()
        t.reset()
        gate.open()
        loop.run_ready()
        assert t.state.mode == Mode.IDLE
        assert not t.reconciler.sampled
        assert t.count is None

    def test_reconnect_superseded_by_start_keeps_new_sample(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        gate = source.hold_clock()
        t.reconnect()
        loop.run_ready()
        source.clock_skew_ms = 40
        t.start()
        loop.run_ready()
        assert t.reconciler.offset_ms == 40
        source.clock_skew_ms = 900
        gate.open()
        loop.run_ready()
        assert t.reconciler.offset_ms == 40

    def test_available_commands(self, loop, renderer):
        t, _ = _make_transport(loop, renderer)
        cmds = t.available_commands()
        assert cmds["start"] and not cmds["stop"] and not cmds["step_forward"]
        t.start()
        loop.run_ready()
        cmds = t.available_commands()
        assert not cmds["start"] and cmds["stop"] and cmds["step_forward"]
        assert not cmds["step_backward"]

    def test_close_cancels_held_tasks(self, loop, renderer):
        t, source = _make_transport(loop, renderer)
        t.start()
        loop.run_ready()
        source.hold(1)
        loop.advance(1000)
        t.close()
        assert all(task.done() for task in loop.tasks)
        assert _no_live_timers(t)
