"""
資料整合模組
把 /api/driver/data 的 trips / trip_passengers / passenger_list
合併成司機端使用的三個集合，並提供單一資料來源的乘客狀態存放區
"""
import logging
from typing import Dict, List, Optional, Set, Tuple

from shuttle_driver import config
from shuttle_driver.modules import utils
from shuttle_driver.modules.models import (
    DriverAllData,
    DriverAllPassenger,
    DriverPassenger,
    Passenger,
    PassengerStatus,
    Snapshot,
    Trip,
)

logger = logging.getLogger("shuttle-driver.reconcile")


# ========== 狀態推導 ==========
def derive_status(raw: Optional[str]) -> PassengerStatus:
    """由後端乘車狀態文字推導狀態；「已上車」優先於「No-show」"""
    if raw and config.BOARDED_TEXT in raw:
        return "boarded"
    if raw and config.NO_SHOW_TEXT in raw:
        return "no_show"
    return "booked"


def infer_waypoints(station: str, direction: str, updown: str) -> Dict[str, str]:
    """
    只有單段資料時推斷五個站點欄位

    飯店依去 / 回程放入 hotel_go 或 hotel_back，無方向時上車視為去程；
    捷運、火車站、LaLaport 直接填入對應欄位
    """
    marks = {"hotel_go": "", "mrt": "", "train": "", "mall": "", "hotel_back": ""}
    s = (station or "").strip()
    ud = updown or ""
    if any(t in s for t in config.INFER_HOTEL_TOKENS):
        if direction == config.DIRECTION_GO:
            marks["hotel_go"] = ud
        elif direction == config.DIRECTION_BACK:
            marks["hotel_back"] = ud
        elif ud == config.UP_TEXT:
            marks["hotel_go"] = ud
        else:
            marks["hotel_back"] = ud
    elif any(t in s for t in config.INFER_MRT_TOKENS):
        marks["mrt"] = ud
    elif any(t in s for t in config.INFER_TRAIN_TOKENS):
        marks["train"] = ud
    elif any(t in s for t in config.INFER_MALL_TOKENS):
        marks["mall"] = ud
    return marks


def _normalized_main_dt(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return utils.normalize_datetime(utils.normalize_date(raw))


# ========== 整合 ==========
def reconcile(data: DriverAllData) -> Snapshot:
    """
    合併三個原始陣列

    - trip_passengers：每一筆分段資料一筆（同一訂單多段不合併）
    - all_passengers：passenger_list 每筆一筆，再補上只出現在分段資料中的訂單
    """
    trips: List[Trip] = []
    trip_map: Dict[str, Tuple[str, str]] = {}
    for t in data.trips:
        date = utils.normalize_date(t.date)
        time_hm = utils.normalize_time(t.time)
        trips.append(Trip(
            id=t.trip_id,
            date=date,
            time=time_hm,
            booked=utils.safe_int(t.total_pax, 0),
        ))
        trip_map[t.trip_id] = (date, time_hm)

    def trip_datetime(trip_id: str) -> str:
        info = trip_map.get(trip_id)
        if not info:
            return ""
        return utils.canonical_datetime(info[0], info[1])

    details: Dict[str, DriverAllPassenger] = {}
    for p in data.passenger_list:
        details[p.booking_id] = p

    # 每筆分段資料
    trip_passengers: List[Passenger] = []
    for p in data.trip_passengers:
        d = details.get(p.booking_id)
        main_dt = _normalized_main_dt(d.main_datetime) if d and d.main_datetime else ""
        trip_passengers.append(Passenger(
            id=p.booking_id,
            trip_id=p.trip_id,
            booking_code=p.booking_id,
            name=p.name,
            phone=p.phone,
            room=p.room,
            pax=utils.safe_int(p.pax, 1),
            station=p.station,
            direction=p.direction or "",
            updown=p.updown,
            status=derive_status(p.status),
            hotel_go=(d.hotel_go or "") if d else "",
            mrt=(d.mrt or "") if d else "",
            train=(d.train or "") if d else "",
            mall=(d.mall or "") if d else "",
            hotel_back=(d.hotel_back or "") if d else "",
            main_datetime=main_dt or trip_datetime(p.trip_id),
            qrcode=p.qrcode,
        ))

    # 出車總覽：passenger_list 優先
    all_passengers: List[Passenger] = []
    processed: Set[str] = set()
    for p in data.passenger_list:
        processed.add(p.booking_id)
        if p.main_datetime:
            main_dt = _normalized_main_dt(p.main_datetime)
        else:
            main_dt = _first_leg_datetime(data.trip_passengers, p.booking_id, trip_datetime)
        all_passengers.append(Passenger(
            id=p.booking_id,
            booking_code=p.booking_id,
            name=p.name,
            phone=p.phone,
            room=p.room,
            pax=utils.safe_int(p.pax, 1),
            direction=p.direction or "",
            status=derive_status(p.ride_status),
            hotel_go=p.hotel_go or "",
            mrt=p.mrt or "",
            train=p.train or "",
            mall=p.mall or "",
            hotel_back=p.hotel_back or "",
            main_datetime=main_dt,
        ))

    # 補上只存在於分段資料的訂單
    for p in data.trip_passengers:
        if p.booking_id in processed:
            continue
        processed.add(p.booking_id)
        marks = infer_waypoints(p.station, p.direction or "", p.updown)
        all_passengers.append(Passenger(
            id=p.booking_id,
            trip_id=p.trip_id,
            booking_code=p.booking_id,
            name=p.name,
            phone=p.phone,
            room=p.room,
            pax=utils.safe_int(p.pax, 1),
            direction=p.direction or "",
            status=derive_status(p.status),
            main_datetime=trip_datetime(p.trip_id),
            qrcode=p.qrcode,
            **marks,
        ))

    return Snapshot(trips=trips, trip_passengers=trip_passengers, all_passengers=all_passengers)


def _first_leg_datetime(legs: List[DriverPassenger], booking_id: str, resolve) -> str:
    # 取輸入順序中第一筆相同訂單的分段
    for leg in legs:
        if leg.booking_id == booking_id:
            return resolve(leg.trip_id)
    return ""


# ========== 上下車摘要 ==========
def _is_up(v: str) -> bool:
    return bool(v) and "上" in v


def _is_down(v: str) -> bool:
    return bool(v) and "下" in v


def updown_summary(p: Passenger) -> Tuple[str, str]:
    """依五個站點欄位列出上車站與下車站（以「、」串接）"""
    up: List[str] = []
    down: List[str] = []
    for field, label in config.WAYPOINT_DISPLAY_NAMES.items():
        v = getattr(p, field) or ""
        if _is_up(v):
            up.append(label)
        if _is_down(v):
            down.append(label)
    return "、".join(up), "、".join(down)


# ========== 乘客狀態存放區 ==========
class PassengerStore:
    """
    司機端唯一的資料來源

    保存最後一次同步的 Snapshot，外加以訂單編號為 key 的本地狀態覆寫
    （掃碼、人工驗票、No-show）；各集合都是從這兩者導出的檢視。
    新的 Snapshot 會清空覆寫，同步結果永遠優先。
    """

    def __init__(self):
        self._snapshot = Snapshot()
        self._overrides: Dict[str, PassengerStatus] = {}

    def replace(self, snapshot: Snapshot):
        self._snapshot = snapshot
        self._overrides.clear()

    def reset(self):
        self.replace(Snapshot())

    @property
    def snapshot(self) -> Snapshot:
        return Snapshot(
            trips=self.trips,
            trip_passengers=self.trip_passengers,
            all_passengers=self.all_passengers,
        )

    @property
    def trips(self) -> List[Trip]:
        return list(self._snapshot.trips)

    @property
    def trip_passengers(self) -> List[Passenger]:
        return [self._apply(p) for p in self._snapshot.trip_passengers]

    @property
    def all_passengers(self) -> List[Passenger]:
        return [self._apply(p) for p in self._snapshot.all_passengers]

    def passengers_for_trip(self, trip_id: str) -> List[Passenger]:
        return [self._apply(p) for p in self._snapshot.trip_passengers if p.trip_id == trip_id]

    def passengers_at_station(self, trip_id: str, label: str) -> List[Passenger]:
        """指定班次中，正規化站點名稱為 label 的乘客"""
        return [
            p for p in self.passengers_for_trip(trip_id)
            if utils.normalize_station(p.station, p.direction, p.updown) == label
        ]

    def find_booking(self, booking_code: str) -> Optional[Passenger]:
        """先找出車總覽，再找班次分段"""
        for p in self._snapshot.all_passengers:
            if p.booking_code == booking_code:
                return self._apply(p)
        for p in self._snapshot.trip_passengers:
            if p.booking_code == booking_code:
                return self._apply(p)
        return None

    def set_status(self, booking_code: str, status: PassengerStatus):
        """本地樂觀更新，直到下一次同步覆蓋"""
        self._overrides[booking_code] = status
        logger.info(f"Local status override: {booking_code} -> {status}")

    def _apply(self, p: Passenger) -> Passenger:
        status = self._overrides.get(p.booking_code)
        if status is None or status == p.status:
            return p
        return p.model_copy(update={"status": status})
