"""
Pydantic 模型定義
後端 driver API 的請求 / 回應格式，以及司機端記憶體中的標準資料型別
"""
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ========== 後端回傳格式（/api/driver/data）==========
class DriverTrip(BaseModel):
    trip_id: str   # 主班次時間原始字串（當 key）
    date: str = ""      # YYYY-MM-DD
    time: str = ""      # HH:MM
    total_pax: Union[int, str] = 0


class DriverPassenger(BaseModel):
    trip_id: str = ""
    station: str = ""          # 站點名稱
    updown: str = ""           # "上車" / "下車"
    booking_id: str
    name: str = ""
    phone: str = ""
    room: str = ""
    pax: Union[int, str, None] = 1
    status: Optional[str] = ""           # "已上車" / "No-show" / ""
    direction: Optional[str] = ""  # 去程 / 回程
    qrcode: str = ""


class DriverAllPassenger(BaseModel):
    booking_id: str
    main_datetime: Optional[str] = ""    # 主班次時間原始字串
    depart_time: str = ""      # HH:mm
    name: str = ""
    phone: str = ""
    room: str = ""
    pax: Union[int, str, None] = 1
    ride_status: Optional[str] = ""
    direction: Optional[str] = ""
    hotel_go: Optional[str] = ""
    mrt: Optional[str] = ""
    train: Optional[str] = ""
    mall: Optional[str] = ""
    hotel_back: Optional[str] = ""


class DriverAllData(BaseModel):
    """整合所有資料的回傳格式：一次取得 trips / trip_passengers / passenger_list"""
    trips: List[DriverTrip] = Field(default_factory=list)
    trip_passengers: List[DriverPassenger] = Field(default_factory=list)
    passenger_list: List[DriverAllPassenger] = Field(default_factory=list)


# ========== 核銷 / 乘客操作 ==========
class DriverCheckinRequest(BaseModel):
    qrcode: str  # FT:{booking_id}:{hash}


class DriverCheckinResponse(BaseModel):
    status: str = ""
    message: Optional[str] = None
    booking_id: Optional[str] = None
    name: Optional[str] = None
    pax: Optional[int] = None
    station: Optional[str] = None
    main_datetime: Optional[str] = None


class BookingIdRequest(BaseModel):
    booking_id: str


class QrInfoRequest(BaseModel):
    qrcode: str


class QrInfoResponse(BaseModel):
    booking_id: Optional[str] = None
    name: Optional[str] = None
    main_datetime: Optional[str] = None
    ride_status: Optional[str] = None
    station_up: Optional[str] = None
    station_down: Optional[str] = None


class TripStatusRequest(BaseModel):
    main_datetime: str  # 格式: YYYY/MM/DD HH:MM
    status: Literal["已發車", "已結束"]


# ========== GPS 定位 ==========
class DriverLocation(BaseModel):
    lat: float
    lng: float
    timestamp: float
    trip_id: Optional[str] = None
    location_provider: str = "google"
    device_id: Optional[str] = None


# ========== 出車 ==========
class GoogleTripStartRequest(BaseModel):
    main_datetime: str
    driver_role: Optional[str] = None
    stops: Optional[List[str]] = None  # 從 APP 傳遞的停靠站點列表


class GoogleTripStartResponse(BaseModel):
    trip_id: Optional[str] = None
    share_url: Optional[str] = None
    stops: Optional[List[dict]] = None


class GoogleTripCompleteRequest(BaseModel):
    trip_id: str
    driver_role: Optional[str] = None
    main_datetime: Optional[str] = None  # 主班次時間，格式: YYYY/MM/DD HH:MM


class TripRouteResponse(BaseModel):
    stops: List[dict] = Field(default_factory=list)


# ========== 司機端標準資料型別 ==========
PassengerStatus = Literal["booked", "boarded", "cancelled", "no_show"]


class Trip(BaseModel):
    id: str
    date: str          # YYYY/MM/DD
    time: str          # HH:MM
    booked: int = 0


class Passenger(BaseModel):
    id: str
    trip_id: str = ""   # 出車總覽（passenger_list）來源者為空
    booking_code: str
    name: str = ""
    phone: str = ""
    room: str = ""
    pax: int = 1
    station: str = ""
    direction: str = ""
    updown: str = ""
    status: PassengerStatus = "booked"
    hotel_go: str = ""
    mrt: str = ""
    train: str = ""
    mall: str = ""
    hotel_back: str = ""
    main_datetime: str = ""
    qrcode: str = ""


class Snapshot(BaseModel):
    """一次同步後的三個集合"""
    trips: List[Trip] = Field(default_factory=list)
    trip_passengers: List[Passenger] = Field(default_factory=list)
    all_passengers: List[Passenger] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.trips or self.trip_passengers or self.all_passengers)


class LocationSample(BaseModel):
    lat: float
    lng: float
    timestamp: float


class ScanRejection(str, Enum):
    FORMAT_ERROR = "format_error"
    NOT_FOUND = "not_found"
    ALREADY_BOARDED = "already_boarded"
    NO_DATETIME = "no_datetime"
    NO_NEAREST_TRIP = "no_nearest_trip"
    NOT_NEAREST_TRIP = "not_nearest_trip"
    OVERDUE = "overdue"
    TOO_EARLY = "too_early"


class ScanResult(BaseModel):
    success: bool
    message: str
    reason: Optional[ScanRejection] = None
    booking_id: Optional[str] = None


class ActionResult(BaseModel):
    """人工驗票 / No-show 等操作結果：本地狀態已套用，remote 為後端回應"""
    booking_id: str
    status: PassengerStatus
    remote: bool


class DepartureNotification(BaseModel):
    id: int
    title: str
    body: str
    at_ms: int
    channel_id: Optional[str] = None
    sound: Optional[str] = None
