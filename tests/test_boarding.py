import asyncio

import httpx

from conftest import FakeClock, Recorder, make_api, ok_handler, sample_payload, ts
from shuttle_driver.modules.boarding import (
    BoardingQueue,
    find_nearest_trip,
    parse_qr_booking_id,
    passenger_within_action_window,
    trip_within_action_window,
)
from shuttle_driver.modules.models import DriverAllData, Passenger, ScanRejection, Snapshot, Trip
from shuttle_driver.modules.reconcile import PassengerStore, reconcile


def payload_with_second_rider():
    payload = sample_payload()
    payload["trip_passengers"].append({
        "trip_id": "2025/01/05 08:00", "station": "福泰大飯店 Forte Hotel", "updown": "上車",
        "booking_id": "B004", "name": "Lee", "pax": 1, "status": "", "direction": "去程",
        "qrcode": "FT:B004:zzz",
    })
    return payload


def make_queue(now: str, handler=ok_handler, recorder=None, payload=None, flush_delay=5.0):
    store = PassengerStore()
    store.replace(reconcile(DriverAllData.model_validate(payload or sample_payload())))
    clock = FakeClock(ts(now))
    queue = BoardingQueue(store, make_api(handler, recorder), flush_delay=flush_delay, clock=clock)
    return queue, store, clock


def test_parse_qr_booking_id():
    assert parse_qr_booking_id("FT:B001:abc") == "B001"
    assert parse_qr_booking_id(" FT: B001 :abc:extra ") == "B001"
    assert parse_qr_booking_id("FT:B001") == ""
    assert parse_qr_booking_id("XX:B001:abc") == ""
    assert parse_qr_booking_id("") == ""


def test_format_error_does_not_touch_state():
    queue, store, _ = make_queue("2025/01/05 07:55")
    before = store.snapshot.model_dump()
    for raw in ("FT:B001", "B001", "QR:B001:abc", ""):
        res = queue.record_scan(raw)
        assert not res.success
        assert res.reason == ScanRejection.FORMAT_ERROR
    assert store.snapshot.model_dump() == before
    assert queue.pending == set()


def test_unknown_and_already_boarded():
    queue, _, _ = make_queue("2025/01/05 10:20")
    assert queue.record_scan("FT:NOPE:x").reason == ScanRejection.NOT_FOUND
    assert queue.record_scan("FT:B002:def").reason == ScanRejection.ALREADY_BOARDED


def test_missing_datetime_rejected():
    payload = sample_payload()
    payload["passenger_list"].append({"booking_id": "B009", "main_datetime": ""})
    queue, _, _ = make_queue("2025/01/05 07:55", payload=payload)
    assert queue.record_scan("FT:B009:x").reason == ScanRejection.NO_DATETIME


def test_no_trips_rejected():
    store = PassengerStore()
    store.replace(Snapshot(all_passengers=[
        Passenger(id="B001", booking_code="B001", main_datetime="2025/01/05 08:00"),
    ]))
    queue = BoardingQueue(store, make_api(ok_handler), clock=FakeClock(ts("2025/01/05 08:00")))
    assert queue.record_scan("FT:B001:x").reason == ScanRejection.NO_NEAREST_TRIP


def test_not_nearest_trip_rejected():
    queue, store, _ = make_queue("2025/01/05 10:00")
    res = queue.record_scan("FT:B001:abc")
    assert res.reason == ScanRejection.NOT_NEAREST_TRIP
    assert store.find_booking("B001").status == "booked"


def scan_at(now: str, raw: str = "FT:B001:abc"):
    async def run():
        queue, store, _ = make_queue(now)
        res = queue.record_scan(raw)
        queue.reset()
        return res, store

    return asyncio.run(run())


def test_overdue_boundary():
    assert scan_at("2025/01/05 08:59")[0].success
    assert scan_at("2025/01/05 09:00")[0].success

    res, store = scan_at("2025/01/05 09:01")
    assert res.reason == ScanRejection.OVERDUE
    assert res.message == "此班次已逾期，未核銷"
    assert store.find_booking("B001").status == "booked"


def test_too_early_boundary():
    assert scan_at("2025/01/05 07:29")[0].reason == ScanRejection.TOO_EARLY
    assert scan_at("2025/01/05 07:30")[0].success


def test_accept_marks_boarded_everywhere_and_enqueues():
    async def run():
        queue, store, _ = make_queue("2025/01/05 07:55")
        res = queue.record_scan("FT:B001:abc")
        assert res.success
        assert res.booking_id == "B001"
        assert store.find_booking("B001").status == "boarded"
        assert all(p.status == "boarded" for p in store.trip_passengers if p.booking_code == "B001")
        assert queue.pending == {"FT:B001:abc"}
        # 第二次掃同一張直接拒絕
        assert queue.record_scan("FT:B001:abc").reason == ScanRejection.ALREADY_BOARDED
        queue.reset()

    asyncio.run(run())


def test_flush_timer_armed_once_and_drains_batch():
    recorder = Recorder()

    async def run():
        queue, _, _ = make_queue(
            "2025/01/05 07:55", recorder=recorder, payload=payload_with_second_rider(), flush_delay=0.05,
        )
        assert queue.record_scan("FT:B001:abc").success
        timer = queue._timer
        assert queue.record_scan("FT:B004:zzz").success
        assert queue._timer is timer
        await asyncio.sleep(0.2)
        return queue

    queue = asyncio.run(run())
    bodies = recorder.bodies("/api/driver/checkin")
    assert sorted(b["qrcode"] for b in bodies) == ["FT:B001:abc", "FT:B004:zzz"]
    assert queue.pending == set()
    assert queue._timer is None


def test_flush_ignores_failures_without_requeue():
    recorder = Recorder()

    def handler(request):
        if request.url.path == "/api/driver/checkin":
            return httpx.Response(500)
        return httpx.Response(200, json={"status": "success"})

    async def run():
        queue, store, _ = make_queue("2025/01/05 07:55", handler=handler, recorder=recorder)
        queue.record_scan("FT:B001:abc")
        flushed = await queue.flush()
        return queue, store, flushed

    queue, store, flushed = asyncio.run(run())
    assert flushed == 1
    assert queue.pending == set()
    # 本地樂觀狀態維持
    assert store.find_booking("B001").status == "boarded"
    assert len(recorder.bodies("/api/driver/checkin")) == 1


def test_flush_runs_before_hook_and_survives_its_failure():
    calls = []

    async def hook():
        calls.append("hook")
        raise RuntimeError("gps down")

    async def run():
        queue, _, _ = make_queue("2025/01/05 07:55")
        queue.before_flush = hook
        queue.record_scan("FT:B001:abc")
        return await queue.flush()

    assert asyncio.run(run()) == 1
    assert calls == ["hook"]


def test_find_nearest_trip():
    trips = [
        Trip(id="a", date="2025/01/05", time="08:00"),
        Trip(id="b", date="2025/01/05", time="10:00"),
    ]
    assert find_nearest_trip([], ts("2025/01/05 08:00")) is None
    assert find_nearest_trip(trips, ts("2025/01/05 08:30")).id == "a"
    assert find_nearest_trip(trips, ts("2025/01/05 09:30")).id == "b"
    assert find_nearest_trip(trips, ts("2025/01/05 07:00")).id == "a"
    assert find_nearest_trip(trips, ts("2025/01/05 11:00")).id == "b"
    # 與前後班次等距時選過去的班次
    assert find_nearest_trip(trips, ts("2025/01/05 09:00")).id == "a"
    # 剛好在發車時間視為未來班次
    assert find_nearest_trip(trips, ts("2025/01/05 10:00")).id == "b"


def test_action_window_helpers():
    trip = Trip(id="a", date="2025-01-05", time="8:00")
    assert trip_within_action_window(trip, ts("2025/01/05 07:00"))
    assert trip_within_action_window(trip, ts("2025/01/05 09:00"))
    assert not trip_within_action_window(trip, ts("2025/01/05 09:01"))
    assert not trip_within_action_window(None, ts("2025/01/05 08:00"))

    p = Passenger(id="B001", booking_code="B001", main_datetime="2025-01-05 08:00")
    assert passenger_within_action_window(p, ts("2025/01/05 08:30"))
    assert not passenger_within_action_window(p, ts("2025/01/05 06:59"))
    assert not passenger_within_action_window(p.model_copy(update={"main_datetime": ""}), ts("2025/01/05 08:00"))
    assert not passenger_within_action_window(None, ts("2025/01/05 08:00"))
