"""
後端 driver API 客戶端
包裝 driver-api2 的 REST 端點；除了資料讀取與位置上傳外，
失敗時一律回傳中性結果（False / 空物件）而不拋出例外
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from shuttle_driver import config
from shuttle_driver.modules.models import (
    BookingIdRequest,
    DriverAllData,
    DriverCheckinRequest,
    DriverCheckinResponse,
    DriverLocation,
    GoogleTripCompleteRequest,
    GoogleTripStartRequest,
    GoogleTripStartResponse,
    QrInfoRequest,
    QrInfoResponse,
    TripRouteResponse,
    TripStatusRequest,
)

logger = logging.getLogger("shuttle-driver.api")


def _is_success(data: Any) -> bool:
    return isinstance(data, dict) and data.get("status") == "success"


class DriverApiClient:
    def __init__(
        self,
        base_url: str = config.API_BASE,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        resp = await self._client.post(path, json=body)
        resp.raise_for_status()
        return resp.json()

    # ========== 資料 ==========
    async def fetch_driver_data(self) -> DriverAllData:
        """一次取得 trips / trip_passengers / passenger_list；失敗時拋出例外"""
        resp = await self._client.get("/api/driver/data")
        resp.raise_for_status()
        return DriverAllData.model_validate(resp.json())

    # ========== 核銷 ==========
    async def confirm_boarding(self, qrcode: str) -> DriverCheckinResponse:
        try:
            data = await self._post(
                "/api/driver/checkin", DriverCheckinRequest(qrcode=qrcode).model_dump()
            )
            return DriverCheckinResponse.model_validate(data or {})
        except Exception as e:
            logger.warning(f"confirm_boarding failed for {qrcode}: {e}")
            return DriverCheckinResponse(status="error", message=str(e))

    async def lookup_qr_info(self, qrcode: str) -> QrInfoResponse:
        try:
            data = await self._post(
                "/api/driver/qrcode_info", QrInfoRequest(qrcode=qrcode).model_dump()
            )
            return QrInfoResponse.model_validate(data or {})
        except Exception as e:
            logger.warning(f"lookup_qr_info failed: {e}")
            return QrInfoResponse()

    async def mark_no_show(self, booking_id: str) -> bool:
        try:
            data = await self._post(
                "/api/driver/no_show", BookingIdRequest(booking_id=booking_id).model_dump()
            )
            return _is_success(data)
        except Exception as e:
            logger.warning(f"mark_no_show failed for {booking_id}: {e}")
            return False

    async def mark_manual_boarding(self, booking_id: str) -> bool:
        try:
            data = await self._post(
                "/api/driver/manual_boarding", BookingIdRequest(booking_id=booking_id).model_dump()
            )
            return _is_success(data)
        except Exception as e:
            logger.warning(f"mark_manual_boarding failed for {booking_id}: {e}")
            return False

    # ========== GPS ==========
    async def send_location(self, loc: DriverLocation):
        """上傳位置；失敗時拋出例外，由定位模組處理"""
        await self._post("/api/driver/location", loc.model_dump(exclude_none=True))

    # ========== 班次 / 出車 ==========
    async def update_trip_status(self, main_datetime: str, status: str) -> bool:
        try:
            body = TripStatusRequest(main_datetime=main_datetime, status=status).model_dump()
            return _is_success(await self._post("/api/driver/trip_status", body))
        except Exception as e:
            logger.warning(f"update_trip_status failed: {e}")
            return False

    async def fetch_trip_route(self, main_datetime: str) -> TripRouteResponse:
        try:
            resp = await self._client.get(
                "/api/driver/trip_route", params={"main_datetime": main_datetime}
            )
            resp.raise_for_status()
            return TripRouteResponse.model_validate(resp.json() or {})
        except Exception as e:
            logger.warning(f"fetch_trip_route failed: {e}")
            return TripRouteResponse()

    async def start_trip(
        self, main_datetime: str, driver_role: Optional[str] = None, stops: Optional[List[str]] = None
    ) -> GoogleTripStartResponse:
        try:
            body = GoogleTripStartRequest(
                main_datetime=main_datetime, driver_role=driver_role, stops=stops
            ).model_dump(exclude_none=True)
            data = await self._post("/api/driver/google/trip_start", body)
            return GoogleTripStartResponse.model_validate(data or {})
        except Exception as e:
            logger.warning(f"start_trip failed: {e}")
            return GoogleTripStartResponse()

    async def complete_trip(
        self, trip_id: str, driver_role: str, main_datetime: Optional[str] = None
    ) -> bool:
        try:
            body = GoogleTripCompleteRequest(
                trip_id=trip_id,
                driver_role=driver_role,
                main_datetime=main_datetime or trip_id,
            ).model_dump()
            return _is_success(await self._post("/api/driver/google/trip_complete", body))
        except Exception as e:
            logger.warning(f"complete_trip failed: {e}")
            return False
