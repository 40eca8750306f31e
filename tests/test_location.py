import asyncio
import json

import httpx

from conftest import FakeClock, Recorder, make_api, ok_handler
from shuttle_driver.modules.location import (
    PREF_HYPERTRACK,
    PREF_LAST_LOCATION,
    LocationEngine,
    MovementDetector,
    PushedLocationProvider,
    haversine_distance,
)
from shuttle_driver.modules.models import LocationSample
from shuttle_driver.modules.prefs import MemoryPreferences

T0 = 1_736_000_000_000
MINUTE = 60 * 1000


def make_engine(handler=ok_handler, recorder=None, prefs=None, debounce_ms=20, secondary=None):
    clock = FakeClock(T0)
    primary = PushedLocationProvider()
    primary.update(LocationSample(lat=25.05, lng=121.61, timestamp=T0))
    engine = LocationEngine(
        make_api(handler, recorder),
        prefs if prefs is not None else MemoryPreferences(),
        primary,
        secondary,
        debounce_ms=debounce_ms,
        clock=clock,
    )
    return engine, clock


def test_haversine_distance():
    assert haversine_distance(25.0, 121.0, 25.0, 121.0) == 0
    # 緯度 0.001 度約 111 公尺
    assert 100 < haversine_distance(25.0, 121.0, 25.001, 121.0) < 120


def test_detector_needs_two_samples():
    d = MovementDetector()
    assert not d.should_shutdown(25.0, 121.0, T0)


def test_detector_triggers_when_not_moving():
    d = MovementDetector()
    d.should_shutdown(25.0, 121.0, T0)
    assert d.should_shutdown(25.0009, 121.0, T0 + 10 * MINUTE)


def test_detector_stays_on_when_moving():
    d = MovementDetector()
    d.should_shutdown(25.0, 121.0, T0)
    assert not d.should_shutdown(25.01, 121.0, T0 + 10 * MINUTE)


def test_detector_prunes_old_samples():
    d = MovementDetector()
    d.should_shutdown(25.0, 121.0, T0)
    assert not d.should_shutdown(25.0, 121.0, T0 + 31 * MINUTE)
    assert len(d.history) == 1


def test_forced_send_uploads_and_persists():
    recorder = Recorder()
    prefs = MemoryPreferences()
    engine, _ = make_engine(recorder=recorder, prefs=prefs)

    loc = asyncio.run(engine.send_location("trip-1", force_send=True))
    assert loc.lat == 25.05
    body = recorder.bodies("/api/driver/location")[0]
    assert body["trip_id"] == "trip-1"
    assert body["location_provider"] == "google"
    assert body.get("device_id") is None
    assert json.loads(asyncio.run(prefs.get(PREF_LAST_LOCATION)))["lng"] == 121.61


def test_interval_gate_returns_last_sent_without_reading():
    recorder = Recorder()
    engine, clock = make_engine(recorder=recorder)

    async def run():
        first = await engine.send_location(force_send=True)
        reads = engine.device_reads
        clock.advance(MINUTE)
        again = await engine.send_location(min_interval_ms=3 * MINUTE)
        return first, again, reads

    first, again, reads = asyncio.run(run())
    assert again is first
    assert engine.device_reads == reads
    assert len(recorder.bodies("/api/driver/location")) == 1


def test_interval_elapsed_sends_again():
    recorder = Recorder()
    engine, clock = make_engine(recorder=recorder)

    async def run():
        await engine.send_location(force_send=True)
        clock.advance(3 * MINUTE)
        await engine.send_location(min_interval_ms=3 * MINUTE)

    asyncio.run(run())
    assert len(recorder.bodies("/api/driver/location")) == 2


def test_debounce_coalesces_with_last_arguments():
    recorder = Recorder()
    engine, _ = make_engine(recorder=recorder)

    async def run():
        return await asyncio.gather(
            engine.send_location("a"),
            engine.send_location("b"),
            engine.send_location("c"),
        )

    results = asyncio.run(run())
    bodies = recorder.bodies("/api/driver/location")
    assert [b["trip_id"] for b in bodies] == ["c"]
    assert all(r is results[0] for r in results)
    assert results[0] is not None


def test_concurrent_forced_sends_share_one_upload():
    recorder = Recorder()
    engine, _ = make_engine(recorder=recorder)

    async def run():
        return await asyncio.gather(
            engine.send_location("t", force_send=True),
            engine.send_location("t", force_send=True),
        )

    a, b = asyncio.run(run())
    assert a is b
    assert len(recorder.bodies("/api/driver/location")) == 1


def test_upload_failure_returns_none_and_keeps_last_sent():
    state = {"fail": False}

    def handler(request):
        if state["fail"]:
            return httpx.Response(502)
        return httpx.Response(200, json={"status": "success"})

    engine, clock = make_engine(handler=handler)

    async def run():
        first = await engine.send_location(force_send=True)
        state["fail"] = True
        clock.advance(10 * MINUTE)
        second = await engine.send_location(force_send=True)
        return first, second

    first, second = asyncio.run(run())
    assert first is not None
    assert second is None
    assert engine.last_sent is first
    assert engine.last_sent_time == T0


def test_no_location_available_returns_none():
    recorder = Recorder()
    engine, _ = make_engine(recorder=recorder)
    engine.primary = PushedLocationProvider()
    assert asyncio.run(engine.send_location(force_send=True)) is None
    assert recorder.requests == []


def test_hypertrack_used_when_enabled():
    recorder = Recorder()
    secondary = PushedLocationProvider("hypertrack", device="dev-42")
    secondary.update(LocationSample(lat=25.06, lng=121.62, timestamp=T0))
    prefs = MemoryPreferences({PREF_HYPERTRACK: "true"})
    engine, _ = make_engine(recorder=recorder, prefs=prefs, secondary=secondary)

    asyncio.run(engine.send_location(force_send=True))
    body = recorder.bodies("/api/driver/location")[0]
    assert body["location_provider"] == "hypertrack"
    assert body["device_id"] == "dev-42"
    assert body["lat"] == 25.06


def test_hypertrack_falls_back_to_google():
    recorder = Recorder()
    secondary = PushedLocationProvider("hypertrack", device="dev-42")
    prefs = MemoryPreferences({PREF_HYPERTRACK: "true"})
    engine, _ = make_engine(recorder=recorder, prefs=prefs, secondary=secondary)

    loc = asyncio.run(engine.send_location(force_send=True))
    body = recorder.bodies("/api/driver/location")[0]
    assert loc.lat == 25.05
    assert body["location_provider"] == "google"
    assert body.get("device_id") is None


def test_provider_cache_and_clear():
    prefs = MemoryPreferences()
    engine, clock = make_engine(prefs=prefs)

    async def run():
        seen = [await engine.get_provider()]
        await prefs.set_bool(PREF_HYPERTRACK, True)
        seen.append(await engine.get_provider())
        clock.advance(5000)
        seen.append(await engine.get_provider())
        await prefs.set_bool(PREF_HYPERTRACK, False)
        engine.clear_provider_cache()
        seen.append(await engine.get_provider())
        return seen

    assert asyncio.run(run()) == ["google", "google", "hypertrack", "google"]


def test_last_known_location_from_prefs():
    prefs = MemoryPreferences({
        PREF_LAST_LOCATION: json.dumps({"lat": 1.5, "lng": 2.5, "timestamp": 9}),
    })
    engine, _ = make_engine(prefs=prefs)
    loc = asyncio.run(engine.last_known_location())
    assert (loc.lat, loc.lng, loc.timestamp) == (1.5, 2.5, 9)


def test_last_known_location_ignores_garbage():
    engine, _ = make_engine(prefs=MemoryPreferences({PREF_LAST_LOCATION: "{not json"}))
    assert asyncio.run(engine.last_known_location()) is None


def test_detector_ignores_repeated_sample():
    d = MovementDetector()
    assert not d.should_shutdown(25.0, 121.0, T0)
    assert not d.should_shutdown(25.0, 121.0, T0)
    assert not d.should_shutdown(25.0, 121.0, T0 - MINUTE)
    assert d.history == [(T0, 25.0, 121.0)]


def test_reset_during_upload_keeps_new_upload_shared():
    recorder = Recorder()
    state = {}

    async def handler(request):
        await state["gate"].wait()
        return httpx.Response(200, json={"status": "success"})

    engine, _ = make_engine(handler=handler, recorder=recorder)

    async def run():
        state["gate"] = asyncio.Event()
        stale = asyncio.ensure_future(engine.send_location("t", force_send=True))
        await asyncio.sleep(0.01)
        engine.reset()
        fresh = asyncio.ensure_future(engine.send_location("t", force_send=True))
        await asyncio.sleep(0.01)
        late = asyncio.ensure_future(engine.send_location("t", force_send=True))
        await asyncio.sleep(0)
        state["gate"].set()
        return await asyncio.gather(stale, fresh, late, return_exceptions=True)

    stale, fresh, late = asyncio.run(run())
    assert isinstance(stale, asyncio.CancelledError)
    assert fresh is late is not None
    assert len(recorder.bodies("/api/driver/location")) == 2
