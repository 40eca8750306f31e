"""
司機端服務 - 主應用文件
將司機端工作階段（同步、核銷、定位、通知）提供給畫面層使用
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from shuttle_driver import config
from shuttle_driver.modules import utils
from shuttle_driver.modules.boarding import passenger_within_action_window, trip_within_action_window
from shuttle_driver.modules.models import (
    ActionResult,
    BookingIdRequest,
    GoogleTripStartResponse,
    LocationSample,
    Passenger,
    QrInfoRequest,
    QrInfoResponse,
    ScanResult,
    Snapshot,
    TripRouteResponse,
    TripStatusRequest,
)
from shuttle_driver.modules.reconcile import updown_summary
from shuttle_driver.session import DriverSession

# 設置日誌
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s"
)
logger = logging.getLogger("shuttle-driver")

# ========== FastAPI 應用初始化 ==========
app = FastAPI(
    title="Shuttle Driver",
    description="司機端服務 - 班次同步、QR 核銷、GPS 上傳、發車提醒",
    version="1.0.0"
)

session = DriverSession()


# ========== 請求模型 ==========
class ScanRequest(BaseModel):
    qrcode: str


class LocationSendRequest(BaseModel):
    force: bool = False


class TripStartBody(BaseModel):
    main_datetime: str
    stops: Optional[List[str]] = None


class TripCompleteBody(BaseModel):
    trip_id: Optional[str] = None
    main_datetime: Optional[str] = None


class AppStateBody(BaseModel):
    active: bool
    current_trip_id: Optional[str] = None


# ========== 啟動事件 ==========
@app.on_event("startup")
async def startup_event():
    """應用啟動時依設定啟動背景循環"""
    if config.ENABLE_BACKGROUND_LOOPS:
        session.start_background()


@app.on_event("shutdown")
async def shutdown_event():
    session.stop_background()


# ========== 健康檢查 ==========
@app.get("/health")
def health():
    """健康檢查端點"""
    return {
        "status": "ok",
        "time": utils.tz_now().strftime("%Y-%m-%d %H:%M:%S"),
        "service": "shuttle-driver",
        "pending_boardings": len(session.boarding.pending),
    }


# ========== 資料 ==========
@app.get("/api/data", response_model=Snapshot)
def get_data():
    """目前的 trips / trip_passengers / all_passengers"""
    return session.store.snapshot


@app.get("/api/trips")
def get_trips() -> List[Dict[str, Any]]:
    """班次列表，附上是否可操作出車開始 / 結束"""
    now = session.clock()
    return [
        dict(t.model_dump(), actions_allowed=trip_within_action_window(t, now))
        for t in session.store.trips
    ]


@app.post("/api/sync", response_model=Snapshot)
async def sync_data():
    return await session.sync()


@app.get("/api/trip_passengers", response_model=List[Passenger])
def get_trip_passengers(trip_id: str, station: Optional[str] = None):
    """班次乘客（trip_id 含斜線，以查詢參數傳入）；可依站點篩選"""
    if station:
        return session.store.passengers_at_station(trip_id, station)
    passengers = session.store.passengers_for_trip(trip_id)
    return sorted(
        passengers,
        key=lambda p: utils.station_sort_order(utils.normalize_station(p.station, p.direction, p.updown)),
    )


@app.get("/api/passengers/{booking_id}")
def get_passenger(booking_id: str) -> Dict[str, Any]:
    """乘客詳細資料（含上下車站摘要）"""
    p = session.store.find_booking(booking_id)
    if p is None:
        raise HTTPException(404, "找不到乘客")
    up, down = updown_summary(p)
    return {
        "passenger": p.model_dump(),
        "station_up": up,
        "station_down": down,
        "main_datetime_label": utils.format_datetime_label(p.main_datetime),
        "actions_allowed": passenger_within_action_window(p, session.clock()),
    }


@app.post("/api/app_state")
def set_app_state(body: AppStateBody):
    """畫面層回報前景 / 背景與目前檢視中的班次"""
    session.app_active = body.active
    session.current_trip_id = body.current_trip_id
    return {"status": "ok"}


# ========== 核銷 ==========
@app.post("/api/scan", response_model=ScanResult)
async def scan(req: ScanRequest):
    code = (req.qrcode or "").strip()
    if not code:
        raise HTTPException(400, "缺少 qrcode")
    return session.record_scan(code)


@app.post("/api/qrcode_info", response_model=QrInfoResponse)
async def qrcode_info(req: QrInfoRequest):
    """查詢 QR 對應的訂單資訊（不核銷）"""
    return await session.api.lookup_qr_info(req.qrcode)

@app.post("/api/no_show", response_model=ActionResult)
async def no_show(req: BookingIdRequest):
    return await session.mark_no_show(req.booking_id)


@app.post("/api/manual_boarding", response_model=ActionResult)
async def manual_boarding(req: BookingIdRequest):
    return await session.mark_manual_boarding(req.booking_id)


# ========== GPS ==========
@app.post("/api/location/fix")
def push_location_fix(sample: LocationSample, provider: str = config.PROVIDER_PRIMARY):
    """裝置端推送最新定位"""
    target = session.secondary if provider == config.PROVIDER_SECONDARY else session.primary
    if not hasattr(target, "update"):
        raise HTTPException(400, f"提供者 {provider} 不接受推送")
    target.update(sample)
    return {"status": "ok"}


@app.post("/api/location/send")
async def send_location(req: LocationSendRequest):
    if req.force:
        res = await session.location.send_location(session.current_trip_id, True)
    else:
        res = await session.gps_tick()
    return {"location": res.model_dump() if res else None}


@app.get("/api/location/last")
async def last_location():
    res = await session.location.last_known_location()
    return {"location": res.model_dump() if res else None}


# ========== 出車 ==========
@app.post("/api/trip/start", response_model=GoogleTripStartResponse)
async def trip_start(body: TripStartBody):
    return await session.start_trip(body.main_datetime, body.stops)


@app.post("/api/trip/complete")
async def trip_complete(body: TripCompleteBody):
    ok = await session.complete_trip(body.trip_id, body.main_datetime)
    return {"status": "success" if ok else "error"}


@app.post("/api/trip/status")
async def trip_status(req: TripStatusRequest):
    """回報班次狀態（已發車 / 已結束）"""
    ok = await session.api.update_trip_status(req.main_datetime, req.status)
    return {"status": "success" if ok else "error"}


@app.get("/api/trip/route", response_model=TripRouteResponse)
async def trip_route(main_datetime: str):
    return await session.api.fetch_trip_route(main_datetime)

# ========== 通知 ==========
@app.post("/api/notifications/today")
async def notifications_today():
    count = await session.schedule_today()
    return {"scheduled": count}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
