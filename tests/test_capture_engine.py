from __future__ import annotations

import asyncio

import pytest

from replayux.capture.engine import CaptureResult, FlushResult

from conftest import settle

TARGET = object()


def run(coro):
    return asyncio.run(coro)


def test_capture_is_noop_while_inactive(make_engine, screenshot) -> None:
    async def scenario():
        engine = make_engine()
        assert await engine.capture(TARGET) is CaptureResult.INACTIVE
        assert await engine.capture_immediate(TARGET) is CaptureResult.INACTIVE
        assert screenshot.calls == 0
        assert engine.frame_count == 0

    run(scenario())


def test_throttle_skips_close_captures(make_engine, clock) -> None:
    async def scenario():
        engine = make_engine(throttle_ms=200)
        engine.start()
        assert await engine.capture(TARGET) is CaptureResult.CAPTURED
        clock.now += 199
        assert await engine.capture(TARGET) is CaptureResult.THROTTLED
        clock.now += 1
        assert await engine.capture(TARGET) is CaptureResult.CAPTURED
        assert engine.frame_count == 2
        assert engine.buffered()["frames"] == 2

    run(scenario())


def test_capture_immediate_ignores_throttle(make_engine) -> None:
    async def scenario():
        engine = make_engine(throttle_ms=10_000)
        engine.start()
        assert await engine.capture(TARGET) is CaptureResult.CAPTURED
        assert await engine.capture(TARGET) is CaptureResult.THROTTLED
        assert await engine.capture_immediate(TARGET) is CaptureResult.CAPTURED
        assert engine.frame_count == 2

    run(scenario())


def test_hard_cap_stops_and_flushes(make_engine, collector, scheduler) -> None:
    async def scenario():
        engine = make_engine(max_frames=2)
        engine.start()
        engine.start_periodic_capture(TARGET)
        assert await engine.capture_immediate(TARGET) is CaptureResult.CAPTURED
        assert await engine.capture_immediate(TARGET) is CaptureResult.CAPTURED
        assert await engine.capture_immediate(TARGET) is CaptureResult.CAP_REACHED
        assert engine.active is False
        assert engine.frame_count == 2
        await engine.join()
        assert len(collector.batches) == 1
        assert [f.image for f in collector.batches[0].frames] == ["img-1", "img-2"]
        # nothing left armed, and no way back without start()
        assert scheduler.pending() == []
        assert await engine.capture_immediate(TARGET) is CaptureResult.INACTIVE

    run(scenario())


def test_frame_count_never_exceeds_cap(make_engine, clock) -> None:
    async def scenario():
        engine = make_engine(max_frames=5, throttle_ms=100)
        engine.start()
        seen = []
        for i in range(40):
            clock.now += 37
            if i % 3 == 0:
                await engine.capture_immediate(TARGET)
            else:
                await engine.capture(TARGET)
            seen.append(engine.frame_count)
        assert max(seen) == 5
        assert all(n <= 5 for n in seen)
        assert seen == sorted(seen)

    run(scenario())


def test_failed_screenshot_does_not_use_budget(make_engine, screenshot) -> None:
    async def scenario():
        engine = make_engine(max_frames=1)
        engine.start()
        screenshot.fail = True
        assert await engine.capture_immediate(TARGET) is CaptureResult.FAILED
        assert engine.frame_count == 0
        assert engine.buffered()["frames"] == 0
        screenshot.fail = False
        assert await engine.capture_immediate(TARGET) is CaptureResult.CAPTURED
        assert engine.frame_count == 1

    run(scenario())


def test_frames_keep_capture_timestamps_in_order(make_engine, clock, collector) -> None:
    async def scenario():
        engine = make_engine(throttle_ms=0)
        engine.start()
        stamps = []
        for _ in range(4):
            clock.now += 50
            stamps.append(clock.now)
            await engine.capture(TARGET)
        assert await engine.flush() is FlushResult.UPLOADED
        assert [f.timestamp for f in collector.batches[0].frames] == stamps

    run(scenario())


def test_register_is_noop_while_inactive(make_engine) -> None:
    engine = make_engine()
    assert engine.register_tap({"x": 1, "y": 2}) is False
    assert engine.register_scroll({"offsetY": 10}) is False
    assert engine.register_navigation({"to": "Home", "trigger": "push"}) is False
    assert engine.buffered() == {"frames": 0, "taps": 0, "scrolls": 0, "navigations": 0}


def test_tap_normalization(make_engine, clock) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()

        engine.register_tap({"x": 100, "y": 200})
        engine.set_device_info({"deviceWidth": 400, "deviceHeight": 800})
        engine.register_tap({"x": 100, "y": 200, "screen": "Home"})
        engine.register_tap({"x": 100, "y": 200, "normalizedX": 0.9, "normalizedY": 0.1})

        raw, derived, given = engine._taps
        assert raw.normalized_x is None and raw.normalized_y is None
        assert derived.normalized_x == pytest.approx(0.25)
        assert derived.normalized_y == pytest.approx(0.25)
        assert derived.screen == "Home"
        assert (given.normalized_x, given.normalized_y) == (0.9, 0.1)
        # timestamp defaults to engine time
        assert raw.timestamp == clock.now

    run(scenario())


def test_flush_empty_is_noop(make_engine, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        assert await engine.flush() is FlushResult.EMPTY
        assert collector.calls == 0

    run(scenario())


def test_flush_batch_carries_session_identity(make_engine, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        engine.set_device_info({"deviceWidth": 390, "deviceHeight": 844})
        await engine.capture(TARGET)
        engine.register_tap({"x": 10, "y": 20})
        engine.register_scroll({"offsetY": 300})
        engine.register_navigation({"from": "Home", "to": "Cart", "trigger": "tab"})
        engine.set_user_id("user-42")

        assert await engine.flush() is FlushResult.UPLOADED
        batch = collector.batches[0]
        assert batch.session_id == "sess-1"
        assert batch.user_id == "user-42"
        assert batch.device == "Pixel 8"
        assert batch.app_version == "1.2.0"
        assert (batch.device_width, batch.device_height) == (390, 844)
        assert (len(batch.frames), len(batch.taps), len(batch.scrolls), len(batch.navigations)) == (1, 1, 1, 1)
        assert batch.navigations[0].trigger == "tab"
        assert engine.buffered() == {"frames": 0, "taps": 0, "scrolls": 0, "navigations": 0}

    run(scenario())


def test_second_flush_while_uploading_is_skipped(make_engine, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        collector.gate = asyncio.Event()
        await engine.capture(TARGET)
        engine.register_tap({"x": 1, "y": 1})

        first = asyncio.ensure_future(engine.flush())
        await settle()
        assert engine.flushing is True

        # arrives mid-upload: must stay buffered, not join the in-flight batch
        engine.register_tap({"x": 2, "y": 2})
        assert await engine.flush() is FlushResult.IN_FLIGHT

        collector.gate.set()
        assert await first is FlushResult.UPLOADED
        assert collector.calls == 1
        assert [t.x for t in collector.batches[0].taps] == [1]
        assert engine.buffered()["taps"] == 1

        collector.gate = None
        assert await engine.flush() is FlushResult.UPLOADED
        assert [t.x for t in collector.batches[1].taps] == [2]

    run(scenario())


def test_upload_failure_drops_batch_and_recovers(make_engine, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        engine.register_scroll({"offsetY": 5})
        collector.fail = True
        assert await engine.flush() is FlushResult.FAILED
        assert engine.flushing is False
        assert engine.buffered()["scrolls"] == 0

        collector.fail = False
        engine.register_scroll({"offsetY": 6})
        assert await engine.flush() is FlushResult.UPLOADED
        assert [s.offset_y for s in collector.batches[0].scrolls] == [6]

    run(scenario())


def test_periodic_flush(make_engine, scheduler, collector) -> None:
    async def scenario():
        engine = make_engine(flush_interval_ms=5_000, periodic_capture_ms=0)
        engine.start()
        engine.register_tap({"x": 3, "y": 4})
        await scheduler.advance(4_999)
        assert collector.calls == 0
        await scheduler.advance(1)
        assert collector.calls == 1
        await scheduler.advance(5_000)
        assert collector.calls == 1  # nothing new buffered

    run(scenario())


def test_periodic_capture_runs_on_interval(make_engine, scheduler) -> None:
    async def scenario():
        engine = make_engine(periodic_capture_ms=300, throttle_ms=200, idle_timeout_ms=0)
        engine.start()
        engine.start_periodic_capture(TARGET)
        await scheduler.advance(900)
        assert engine.frame_count == 3

    run(scenario())


def test_periodic_capture_disabled_with_zero_interval(make_engine, scheduler) -> None:
    async def scenario():
        engine = make_engine(periodic_capture_ms=0)
        engine.start()
        engine.start_periodic_capture(TARGET)
        assert engine.periodic_capture_running is False
        await scheduler.advance(10_000)
        assert engine.frame_count == 0

    run(scenario())


def test_idle_pauses_background_capture_until_interaction(make_engine, scheduler) -> None:
    async def scenario():
        engine = make_engine(idle_timeout_ms=1_000, periodic_capture_ms=300, throttle_ms=200)
        engine.start()
        engine.start_periodic_capture(TARGET)

        await scheduler.advance(1_001)
        assert engine.idle is True
        assert engine.periodic_capture_running is False
        frames_before_idle = engine.frame_count
        assert frames_before_idle == 3

        await scheduler.advance(5_000)
        assert engine.frame_count == frames_before_idle

        # interaction capture is still allowed while idle
        assert await engine.capture_immediate(TARGET) is CaptureResult.CAPTURED

        engine.register_tap({"x": 5, "y": 5})
        assert engine.idle is False
        assert engine.periodic_capture_running is True
        await scheduler.advance(300)
        assert engine.frame_count == frames_before_idle + 2

        # the idle window restarted at the tap
        await scheduler.advance(699)
        assert engine.idle is False
        await scheduler.advance(2)
        assert engine.idle is True

    run(scenario())


def test_idle_detection_disabled_with_zero_timeout(make_engine, scheduler) -> None:
    async def scenario():
        engine = make_engine(idle_timeout_ms=0, periodic_capture_ms=1_000)
        engine.start()
        engine.start_periodic_capture(TARGET)
        await scheduler.advance(60_000)
        assert engine.idle is False
        assert engine.frame_count == 60

    run(scenario())


def test_stop_cancels_timers_and_flushes(make_engine, scheduler, collector) -> None:
    async def scenario():
        engine = make_engine(periodic_capture_ms=500)
        engine.start()
        engine.start_periodic_capture(TARGET)
        engine.register_tap({"x": 1, "y": 1})
        task = engine.stop()
        assert engine.active is False
        assert scheduler.pending() == []
        assert await task is FlushResult.UPLOADED
        await scheduler.advance(60_000)
        assert engine.frame_count == 0
        assert collector.calls == 1

    run(scenario())


def test_app_state_change_flushes_when_not_active(make_engine, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        engine.register_scroll({"offsetY": 1})
        assert engine.on_app_state_change("active") is None
        assert collector.calls == 0
        assert await engine.on_app_state_change("background") is FlushResult.UPLOADED
        assert collector.calls == 1

    run(scenario())


def test_close_waits_for_final_flush(make_engine, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        await engine.capture(TARGET)
        await engine.close()
        assert collector.calls == 1
        assert engine.buffered()["frames"] == 0
        assert collector.closed is True

    run(scenario())


def test_anonymous_user_id_when_none_given(make_engine) -> None:
    engine = make_engine(user_id=None)
    assert engine.user_id.startswith("anon-")


def test_close_delivers_frame_captured_during_stop(make_engine, screenshot, collector) -> None:
    async def scenario():
        engine = make_engine()
        engine.start()
        screenshot.gate = asyncio.Event()
        engine.spawn(engine.capture_immediate(TARGET))
        await settle()
        assert screenshot.calls == 1

        engine.stop()
        await settle()
        # nothing buffered yet, the stop flush had nothing to send
        assert collector.calls == 0

        closing = asyncio.ensure_future(engine.close())
        await settle()
        screenshot.gate.set()
        assert await closing == FlushResult.UPLOADED
        assert [f.image for b in collector.batches for f in b.frames] == ["img-1"]
        assert collector.closed is True

    run(scenario())


def test_spawn_without_running_loop_is_dropped(make_engine) -> None:
    engine = make_engine()

    async def noop():
        return None

    assert engine.spawn(noop()) is None
