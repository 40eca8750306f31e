"""
司機端工作階段
集中持有同步、核銷佇列、定位、通知排程的所有狀態，並提供兩個背景循環：
資料同步（前景 / 背景不同間隔）與 GPS 上傳（固定最小間隔）
"""
import asyncio
import logging
from typing import Callable, List, Optional

from shuttle_driver import config
from shuttle_driver.modules import utils
from shuttle_driver.modules.api import DriverApiClient
from shuttle_driver.modules.boarding import BoardingQueue
from shuttle_driver.modules.location import LocationEngine, LocationProvider, MovementDetector, PushedLocationProvider
from shuttle_driver.modules.models import (
    ActionResult,
    GoogleTripStartResponse,
    LocationSample,
    PassengerStatus,
    ScanResult,
    Snapshot,
)
from shuttle_driver.modules.notification import LogNotifier, NotificationScheduler, Notifier
from shuttle_driver.modules.prefs import Preferences, build_preferences
from shuttle_driver.modules.reconcile import PassengerStore
from shuttle_driver.modules.sync import DataSynchronizer

logger = logging.getLogger("shuttle-driver.session")

# 偏好設定 key
PREF_GPS_ENABLED = "gps_enabled"
PREF_GPS_INTERVAL = "gps_update_interval"
PREF_DATA_INTERVAL = "data_update_interval"
PREF_AUTO_SHUTDOWN_ENABLED = "auto_shutdown_enabled"
PREF_AUTO_SHUTDOWN_MINUTES = "auto_shutdown_minutes"
PREF_AUTO_SHUTDOWN_DISTANCE = "auto_shutdown_distance"
PREF_DRIVER_TRIP_ID = "driver_trip_id"
PREF_USER_ROLE = "user_role"
PREF_NOTIFY_ENABLED = "notification_sound_enabled"
PREF_NOTIFY_MINUTES = "notification_minutes"
PREF_SELECTED_SOUND = "selected_sound"


class DriverSession:
    def __init__(
        self,
        api: Optional[DriverApiClient] = None,
        prefs: Optional[Preferences] = None,
        notifier: Optional[Notifier] = None,
        primary: Optional[LocationProvider] = None,
        secondary: Optional[LocationProvider] = None,
        clock: Callable[[], int] = utils.now_ms,
        flush_delay: float = config.FLUSH_DELAY_SECONDS,
        debounce_ms: int = config.LOCATION_DEBOUNCE_MS,
    ):
        self.api = api or DriverApiClient()
        self.prefs = prefs or build_preferences()
        self.notifier = notifier or LogNotifier()
        self.primary = primary or PushedLocationProvider(config.PROVIDER_PRIMARY)
        self.secondary = secondary or PushedLocationProvider(config.PROVIDER_SECONDARY, config.DEVICE_ID)
        self.clock = clock

        self.store = PassengerStore()
        self.synchronizer = DataSynchronizer(self.api)
        self.location = LocationEngine(
            self.api, self.prefs, self.primary, self.secondary,
            debounce_ms=debounce_ms, clock=clock,
        )
        self.detector = MovementDetector()
        self.boarding = BoardingQueue(
            self.store, self.api, flush_delay=flush_delay, clock=clock,
            before_flush=self._force_location,
        )
        self.scheduler = NotificationScheduler(self.prefs, self.notifier, clock=clock)

        self.current_trip_id: Optional[str] = None
        self.app_active = True
        self._loops: List[asyncio.Task] = []

    # ========== 同步 ==========
    async def sync(self) -> Snapshot:
        """
        同步後端資料

        同步結果為空時視為失敗，保留原本的資料；
        成功時整批取代（本地尚未送出的樂觀更新會被覆蓋）
        """
        await self._force_location()
        snapshot = await self.synchronizer.fetch_all()
        if snapshot.is_empty():
            logger.warning("Sync returned no data, keeping previous state")
        else:
            self.store.replace(snapshot)
        return self.store.snapshot

    # ========== 核銷 / 乘客操作 ==========
    def record_scan(self, raw: str) -> ScanResult:
        return self.boarding.record_scan(raw)

    async def _mark(self, booking_id: str, status: PassengerStatus, call) -> ActionResult:
        self.store.set_status(booking_id, status)
        await self._force_location()
        remote = await call(booking_id)
        if not remote:
            logger.warning(f"Server did not confirm {status} for {booking_id}")
        return ActionResult(booking_id=booking_id, status=status, remote=remote)

    async def mark_no_show(self, booking_id: str) -> ActionResult:
        return await self._mark(booking_id, "no_show", self.api.mark_no_show)

    async def mark_manual_boarding(self, booking_id: str) -> ActionResult:
        return await self._mark(booking_id, "boarded", self.api.mark_manual_boarding)

    # ========== GPS ==========
    async def gps_enabled(self) -> bool:
        return await self.prefs.get_bool(PREF_GPS_ENABLED, True)

    async def _force_location(self) -> Optional[LocationSample]:
        if not await self.gps_enabled():
            return None
        return await self.location.send_location(self.current_trip_id, True)

    async def gps_interval_ms(self) -> int:
        minutes = await self.prefs.get_int(PREF_GPS_INTERVAL, config.DEFAULT_GPS_INTERVAL_MINUTES)
        return max(config.MIN_GPS_INTERVAL_MINUTES, minutes) * 60 * 1000

    async def gps_tick(self) -> Optional[LocationSample]:
        """
        GPS 循環的一次執行：依間隔上傳位置，並檢查是否自動關閉定位

        自動關閉時停用 GPS；若正在出車則一併結束出車
        """
        if not await self.gps_enabled():
            return None
        res = await self.location.send_location(self.current_trip_id, False, await self.gps_interval_ms())
        if res is None or not await self.prefs.get_bool(PREF_AUTO_SHUTDOWN_ENABLED, False):
            return res

        minutes = max(1, await self.prefs.get_int(PREF_AUTO_SHUTDOWN_MINUTES, config.AUTO_SHUTDOWN_WINDOW_MS // 60000))
        distance = max(1, await self.prefs.get_int(PREF_AUTO_SHUTDOWN_DISTANCE, config.AUTO_SHUTDOWN_MIN_DISTANCE_M))
        if self.detector.should_shutdown(res.lat, res.lng, res.timestamp, minutes * 60 * 1000, distance):
            logger.info(f"Auto shutdown: moved < {distance} m in {minutes} min")
            await self.prefs.set_bool(PREF_GPS_ENABLED, False)
            active_trip = await self.prefs.get(PREF_DRIVER_TRIP_ID)
            if active_trip:
                await self.complete_trip(active_trip)
        return res

    # ========== 出車 ==========
    async def driver_role(self) -> str:
        return (await self.prefs.get(PREF_USER_ROLE)) or config.DEFAULT_DRIVER_ROLE

    async def start_trip(self, main_datetime: str, stops: Optional[List[str]] = None) -> GoogleTripStartResponse:
        resp = await self.api.start_trip(main_datetime, await self.driver_role(), stops)
        if resp.trip_id:
            await self.prefs.set(PREF_DRIVER_TRIP_ID, resp.trip_id)
        await self.prefs.set_bool(PREF_GPS_ENABLED, True)
        return resp

    async def complete_trip(self, trip_id: Optional[str] = None, main_datetime: Optional[str] = None) -> bool:
        trip_id = trip_id or await self.prefs.get(PREF_DRIVER_TRIP_ID)
        if not trip_id:
            return False
        ok = await self.api.complete_trip(trip_id, await self.driver_role(), main_datetime)
        if ok:
            await self.prefs.remove(PREF_DRIVER_TRIP_ID)
        return ok

    # ========== 通知 ==========
    async def schedule_today(self) -> int:
        if not await self.prefs.get_bool(PREF_NOTIFY_ENABLED, True):
            return 0
        lead = await self.prefs.get_int(PREF_NOTIFY_MINUTES, config.NOTIFY_LEAD_MINUTES)
        sound = (await self.prefs.get(PREF_SELECTED_SOUND)) or config.DEFAULT_SOUND
        return await self.scheduler.schedule_today(self.store.trips, lead, True, sound)

    # ========== 背景循環 ==========
    def in_sync_window(self) -> bool:
        now = utils.tz_now(self.clock())
        minutes = now.hour * 60 + now.minute
        return config.SYNC_WINDOW_START <= minutes <= config.SYNC_WINDOW_END

    async def data_interval_ms(self) -> int:
        if not self.app_active:
            return config.BACKGROUND_DATA_INTERVAL_MINUTES * 60 * 1000
        minutes = await self.prefs.get_int(PREF_DATA_INTERVAL, config.DEFAULT_DATA_INTERVAL_MINUTES)
        return max(1, minutes) * 60 * 1000

    async def data_tick(self) -> bool:
        if not self.in_sync_window():
            return False
        await self.sync()
        await self.schedule_today()
        return True

    async def _run_data_loop(self):
        while True:
            try:
                await self.data_tick()
            except Exception as e:
                logger.error(f"Data loop error: {e}", exc_info=True)
            await asyncio.sleep(await self.data_interval_ms() / 1000)

    async def _run_gps_loop(self):
        while True:
            try:
                await self.gps_tick()
            except Exception as e:
                logger.error(f"GPS loop error: {e}", exc_info=True)
            await asyncio.sleep(await self.gps_interval_ms() / 1000)

    def start_background(self):
        if self._loops:
            return
        self._loops = [
            asyncio.ensure_future(self._run_data_loop()),
            asyncio.ensure_future(self._run_gps_loop()),
        ]
        logger.info("Background loops started")

    def stop_background(self):
        for task in self._loops:
            task.cancel()
        self._loops = []

    def reset(self):
        """清除所有記憶體狀態（不影響已持久化的偏好設定）"""
        self.stop_background()
        self.boarding.reset()
        self.location.reset()
        self.synchronizer.reset()
        self.detector.reset()
        self.store.reset()
        self.scheduler.reset()
        self.current_trip_id = None

    async def aclose(self):
        self.reset()
        await self.api.aclose()
