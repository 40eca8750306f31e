"""
QR Code 核銷佇列
以本地已載入的資料即時驗證掃碼結果（樂觀更新），
再由單一計時器延遲批次送出核銷請求
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from shuttle_driver import config
from shuttle_driver.modules import utils
from shuttle_driver.modules.api import DriverApiClient
from shuttle_driver.modules.models import Passenger, ScanRejection, ScanResult, Trip
from shuttle_driver.modules.reconcile import PassengerStore

logger = logging.getLogger("shuttle-driver.boarding")

REJECTION_MESSAGES = {
    ScanRejection.FORMAT_ERROR: "QRCode 格式錯誤",
    ScanRejection.NOT_FOUND: "QR 不在目前資料",
    ScanRejection.ALREADY_BOARDED: "此乘客已上車，不重複核銷",
    ScanRejection.NO_DATETIME: "未找到乘客主班次時間",
    ScanRejection.NO_NEAREST_TRIP: "目前沒有最近班次",
    ScanRejection.NOT_NEAREST_TRIP: "非最近班次，未核銷",
    ScanRejection.OVERDUE: "此班次已逾期，未核銷",
    ScanRejection.TOO_EARLY: f"尚未發車（早於 {config.SCAN_EARLY_MINUTES} 分鐘）",
}
SUCCESS_MESSAGE = "確認上車成功"


def trip_timestamp(trip: Trip) -> int:
    return utils.parse_datetime(utils.canonical_datetime(trip.date, trip.time))


def trip_within_action_window(trip: Optional[Trip], now: int, window_minutes: int = config.ACTION_WINDOW_MINUTES) -> bool:
    """班次是否在可操作時間內（決定是否顯示出車開始 / 結束）"""
    if trip is None:
        return False
    ts = trip_timestamp(trip)
    return bool(ts) and utils.is_within_action_window(ts, now, window_minutes)


def passenger_within_action_window(
    passenger: Optional[Passenger], now: int, window_minutes: int = config.ACTION_WINDOW_MINUTES
) -> bool:
    """乘客主班次是否在可操作時間內（決定是否顯示人工驗票 / No-show）；沒有主班次時間視為否"""
    if passenger is None or not passenger.main_datetime:
        return False
    ts = utils.parse_datetime(utils.normalize_date(passenger.main_datetime))
    return bool(ts) and utils.is_within_action_window(ts, now, window_minutes)


def find_nearest_trip(trips: List[Trip], now: int) -> Optional[Trip]:
    """
    距離現在最近的班次

    取最早的未來班次與最晚的過去班次比較，時間差相同時選過去班次
    """
    best_future: Optional[Trip] = None
    best_future_ts = 0
    last_past: Optional[Trip] = None
    last_past_ts = 0

    for t in trips:
        ts = trip_timestamp(t)
        if ts >= now:
            if best_future is None or ts < best_future_ts:
                best_future, best_future_ts = t, ts
        else:
            if last_past is None or ts > last_past_ts:
                last_past, last_past_ts = t, ts

    if best_future is not None and last_past is not None:
        future_delta = abs(best_future_ts - now)
        past_delta = abs(now - last_past_ts)
        return last_past if past_delta <= future_delta else best_future
    return best_future or last_past


def parse_qr_booking_id(raw: str) -> str:
    """解析 FT:{booking_id}:{hash}；格式不符回傳空字串"""
    parts = (raw or "").strip().split(":")
    if len(parts) < 3 or parts[0] != config.QR_PREFIX:
        return ""
    return parts[1].strip()


class BoardingQueue:
    def __init__(
        self,
        store: PassengerStore,
        api: DriverApiClient,
        flush_delay: float = config.FLUSH_DELAY_SECONDS,
        clock: Callable[[], int] = utils.now_ms,
        before_flush: Optional[Callable[[], Awaitable]] = None,
    ):
        self.store = store
        self.api = api
        self.flush_delay = flush_delay
        self.clock = clock
        self.before_flush = before_flush
        self.pending: Set[str] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    def _reject(self, reason: ScanRejection, booking_id: Optional[str] = None) -> ScanResult:
        logger.info(f"Scan rejected ({reason.value}): {booking_id or '-'}")
        return ScanResult(
            success=False,
            reason=reason,
            message=REJECTION_MESSAGES[reason],
            booking_id=booking_id,
        )

    def record_scan(self, raw: str) -> ScanResult:
        """以本地資料驗證掃碼；通過後立即標記已上車並排入待送佇列"""
        booking_id = parse_qr_booking_id(raw)
        if not booking_id:
            return self._reject(ScanRejection.FORMAT_ERROR)

        pax = self.store.find_booking(booking_id)
        if pax is None:
            return self._reject(ScanRejection.NOT_FOUND, booking_id)
        if pax.status == "boarded":
            return self._reject(ScanRejection.ALREADY_BOARDED, booking_id)

        pax_dt = utils.normalize_datetime(utils.normalize_date(pax.main_datetime))
        dep_ts = utils.parse_datetime(pax_dt)
        if not pax_dt or not dep_ts:
            return self._reject(ScanRejection.NO_DATETIME, booking_id)

        now = self.clock()
        nearest = find_nearest_trip(self.store.trips, now)
        if nearest is None:
            return self._reject(ScanRejection.NO_NEAREST_TRIP, booking_id)
        if pax_dt != utils.canonical_datetime(nearest.date, nearest.time):
            return self._reject(ScanRejection.NOT_NEAREST_TRIP, booking_id)

        diff_sec = (now - dep_ts) / 1000
        if diff_sec > config.SCAN_OVERDUE_MINUTES * 60:
            return self._reject(ScanRejection.OVERDUE, booking_id)
        if diff_sec < -config.SCAN_EARLY_MINUTES * 60:
            return self._reject(ScanRejection.TOO_EARLY, booking_id)

        self.store.set_status(booking_id, "boarded")
        self.pending.add(raw.strip())
        self._schedule_flush()
        return ScanResult(success=True, message=SUCCESS_MESSAGE, booking_id=booking_id)

    # ========== 批次送出 ==========
    def _schedule_flush(self):
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.flush_delay, self._on_timer)

    def _on_timer(self):
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> int:
        """清空待送佇列並逐筆送出核銷；個別失敗不重試也不重新排入"""
        items = list(self.pending)
        self.pending.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not items:
            return 0

        if self.before_flush is not None:
            try:
                await self.before_flush()
            except Exception as e:
                logger.error(f"GPS send error during flush: {e}")

        for qrcode in items:
            try:
                res = await self.api.confirm_boarding(qrcode)
                if res.status != "success":
                    logger.warning(f"Checkin not confirmed for {qrcode}: {res.message or res.status}")
            except Exception as e:
                logger.warning(f"Checkin request error for {qrcode}: {e}")
        logger.info(f"Flushed {len(items)} pending boardings")
        return len(items)

    def reset(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.pending.clear()
