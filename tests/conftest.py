import json
from typing import Callable, List

import httpx
import pytest

from shuttle_driver.modules.api import DriverApiClient
from shuttle_driver.modules.utils import parse_datetime


class FakeClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class Recorder:
    """Collects requests seen by a MockTransport handler."""

    def __init__(self):
        self.requests: List[httpx.Request] = []

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def bodies(self, path: str) -> List[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


def make_api(handler: Callable[[httpx.Request], httpx.Response], recorder: Recorder = None) -> DriverApiClient:
    def wrapped(request: httpx.Request):
        if recorder is not None:
            recorder.requests.append(request)
        return handler(request)

    return DriverApiClient(base_url="http://driver.test", transport=httpx.MockTransport(wrapped))


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"status": "success"})


def ts(raw: str) -> int:
    return parse_datetime(raw)


def sample_payload() -> dict:
    """Two trips on 2025-01-05; B001 rides two legs, B002 only exists as a leg."""
    return {
        "trips": [
            {"trip_id": "2025/01/05 08:00", "date": "2025-01-05", "time": "8:00", "total_pax": 3},
            {"trip_id": "2025/01/05 10:30", "date": "2025-01-05", "time": "10:30", "total_pax": 1},
        ],
        "trip_passengers": [
            {
                "trip_id": "2025/01/05 08:00", "station": "福泰大飯店 Forte Hotel", "updown": "上車",
                "booking_id": "B001", "name": "王小明", "phone": "0912", "room": "501", "pax": 2,
                "status": "", "direction": "去程", "qrcode": "FT:B001:abc",
            },
            {
                "trip_id": "2025/01/05 08:00", "station": "南港火車站 Nangang Train Station", "updown": "下車",
                "booking_id": "B001", "name": "王小明", "phone": "0912", "room": "501", "pax": 2,
                "status": "", "direction": "去程", "qrcode": "FT:B001:abc",
            },
            {
                "trip_id": "2025/01/05 10:30", "station": "南港展覽館捷運站 Nangang Exhibition Center - MRT Exit 3",
                "updown": "上車", "booking_id": "B002", "name": "Amy", "phone": "0933", "room": "",
                "pax": "abc", "status": "✅ 已上車", "direction": "回程", "qrcode": "FT:B002:def",
            },
        ],
        "passenger_list": [
            {
                "booking_id": "B001", "main_datetime": "2025-01-05 8:00", "depart_time": "08:00",
                "name": "王小明", "phone": "0912", "room": "501", "pax": 2, "ride_status": "",
                "direction": "去程", "hotel_go": "上", "mrt": "", "train": "下", "mall": "",
                "hotel_back": "",
            },
        ],
    }


@pytest.fixture
def payload() -> dict:
    return sample_payload()
