"""
GPS 定位模組
處理定位上傳的防抖、間隔限制、提供者選擇（HyperTrack > Google）與回退，
以及依位移判斷是否自動關閉定位
"""
import asyncio
import logging
import math
from typing import Callable, Dict, List, Optional, Tuple

from shuttle_driver import config
from shuttle_driver.modules import utils
from shuttle_driver.modules.api import DriverApiClient
from shuttle_driver.modules.cache import TimedCache
from shuttle_driver.modules.models import DriverLocation, LocationSample
from shuttle_driver.modules.prefs import Preferences

logger = logging.getLogger("shuttle-driver.location")

PREF_HYPERTRACK = "location_provider_hypertrack"
PREF_LAST_LOCATION = "last_location"


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """計算兩點之間的距離（公尺），使用 Haversine 公式"""
    R = config.EARTH_RADIUS_M
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi / 2) ** 2 + \
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


# ========== 定位提供者 ==========
class LocationProvider:
    """裝置定位來源介面"""

    name = config.PROVIDER_PRIMARY

    async def current_location(self) -> Optional[LocationSample]:
        raise NotImplementedError

    async def device_id(self) -> Optional[str]:
        return None


class PushedLocationProvider(LocationProvider):
    """由裝置端推送的最新定位（服務本身無法直接讀取 GPS）"""

    def __init__(self, name: str = config.PROVIDER_PRIMARY, device: Optional[str] = None):
        self.name = name
        self._device = device
        self._latest: Optional[LocationSample] = None

    def update(self, sample: LocationSample):
        self._latest = sample

    async def current_location(self) -> Optional[LocationSample]:
        return self._latest

    async def device_id(self) -> Optional[str]:
        return self._device


# ========== 上傳引擎 ==========
class LocationEngine:
    def __init__(
        self,
        api: DriverApiClient,
        prefs: Preferences,
        primary: LocationProvider,
        secondary: Optional[LocationProvider] = None,
        debounce_ms: int = config.LOCATION_DEBOUNCE_MS,
        provider_cache_ms: int = config.PROVIDER_CACHE_MS,
        clock: Callable[[], int] = utils.now_ms,
    ):
        self.api = api
        self.prefs = prefs
        self.primary = primary
        self.secondary = secondary
        self.debounce_ms = debounce_ms
        self.clock = clock
        self._provider_cache = TimedCache(provider_cache_ms, clock=clock)
        self.last_sent_time = 0
        self.last_sent: Optional[LocationSample] = None
        self._pending: Dict[str, asyncio.Task] = {}
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._debounce_waiters: List[asyncio.Future] = []
        self._debounce_args: Tuple[Optional[str], int] = (None, 0)
        self._tasks = set()
        self.device_reads = 0

    # ---------- 提供者 ----------
    async def get_provider(self, use_cache: bool = True) -> str:
        """目前選擇的定位方式（HyperTrack 優先，其次 Google，預設 Google）"""
        if use_cache:
            cached = self._provider_cache.get()
            if cached is not None:
                return cached
        try:
            hypertrack = await self.prefs.get_bool(PREF_HYPERTRACK)
        except Exception as e:
            logger.error(f"Error reading location provider preferences: {e}")
            return config.PROVIDER_PRIMARY
        result = config.PROVIDER_SECONDARY if hypertrack else config.PROVIDER_PRIMARY
        self._provider_cache.set(result)
        return result

    def clear_provider_cache(self):
        """定位提供者改變時呼叫"""
        self._provider_cache.invalidate()

    # ---------- 發送 ----------
    async def send_location(
        self,
        trip_id: Optional[str] = None,
        force_send: bool = False,
        min_interval_ms: int = config.DEFAULT_GPS_INTERVAL_MINUTES * 60 * 1000,
    ) -> Optional[LocationSample]:
        """
        讀取並上傳目前位置

        非強制呼叫會防抖：短時間內多次呼叫合併成一次（以最後一次的參數為準），
        且在間隔未到時直接回傳上次送出的位置；強制呼叫立即執行。
        失敗回傳 None，不拋出例外。
        """
        if force_send:
            return await self._execute(trip_id, True, min_interval_ms)

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._debounce_waiters.append(waiter)
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_args = (trip_id, min_interval_ms)
        self._debounce_handle = loop.call_later(self.debounce_ms / 1000, self._fire_debounced)
        return await waiter

    def _fire_debounced(self):
        waiters = self._debounce_waiters
        trip_id, min_interval_ms = self._debounce_args
        self._debounce_waiters = []
        self._debounce_handle = None
        task = asyncio.ensure_future(self._resolve_waiters(waiters, trip_id, min_interval_ms))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve_waiters(self, waiters, trip_id, min_interval_ms):
        try:
            result = await self._execute(trip_id, False, min_interval_ms)
        except Exception:
            result = None
        for w in waiters:
            if not w.done():
                w.set_result(result)

    async def _execute(self, trip_id: Optional[str], force_send: bool, min_interval_ms: int):
        key = f"location_{trip_id or 'none'}_{force_send}"
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._send(key, trip_id, force_send, min_interval_ms))
            self._pending[key] = task
        return await asyncio.shield(task)

    async def _read(self, provider: str) -> Tuple[Optional[LocationSample], str, Optional[str]]:
        """讀取位置；HyperTrack 無法定位時回退到 Google，並回報實際使用的提供者"""
        self.device_reads += 1
        if provider == config.PROVIDER_SECONDARY and self.secondary is not None:
            try:
                loc = await self.secondary.current_location()
                if loc is not None:
                    return loc, provider, await self.secondary.device_id()
                logger.warning("HyperTrack location not available, falling back to Google")
            except Exception as e:
                logger.error(f"HyperTrack location error, falling back to Google: {e}")
        loc = await self.primary.current_location()
        return loc, config.PROVIDER_PRIMARY, None

    async def _send(self, key, trip_id, force_send, min_interval_ms) -> Optional[LocationSample]:
        try:
            now = self.clock()
            if not force_send and self.last_sent_time > 0 and (now - self.last_sent_time) < min_interval_ms:
                return self.last_sent

            provider = await self.get_provider(True)
            loc, provider, device_id = await self._read(provider)
            if loc is None:
                logger.error("Failed to get location from any provider")
                return None

            payload = DriverLocation(
                lat=loc.lat,
                lng=loc.lng,
                timestamp=loc.timestamp,
                trip_id=trip_id,
                location_provider=provider,
                device_id=device_id if provider == config.PROVIDER_SECONDARY else None,
            )
            await self.api.send_location(payload)
            logger.info(f"Location sent ({provider}): {loc.lat}, {loc.lng} Trip ID: {trip_id}")

            self.last_sent_time = now
            self.last_sent = loc
            await self._persist(loc)
            return loc
        except Exception as e:
            logger.error(f"Error sending location: {e}")
            return None
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    async def _persist(self, loc: LocationSample):
        try:
            await self.prefs.set(PREF_LAST_LOCATION, loc.model_dump_json())
        except Exception as e:
            logger.warning(f"Persist last location failed: {e}")

    async def last_known_location(self) -> Optional[LocationSample]:
        """最後一次成功送出的位置（不重新讀取裝置）"""
        if self.last_sent is not None:
            return self.last_sent
        try:
            raw = await self.prefs.get(PREF_LAST_LOCATION)
            if raw:
                return LocationSample.model_validate_json(raw)
        except Exception as e:
            logger.warning(f"Load last location failed: {e}")
        return None

    def reset(self):
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        for w in self._debounce_waiters:
            if not w.done():
                w.set_result(None)
        self._debounce_waiters = []
        for task in list(self._pending.values()) + list(self._tasks):
            task.cancel()
        self._pending.clear()
        self._tasks.clear()
        self._provider_cache.invalidate()
        self.last_sent_time = 0
        self.last_sent = None


# ========== 自動關閉定位 ==========
class MovementDetector:
    """
    以觀察窗內最舊與最新位置的直線距離判斷是否停止移動

    只看淨位移而非路徑總長：窗內來回移動也可能觸發關閉
    時間戳未比上一筆新的樣本（重複送入的同一筆定位）會被忽略
    """

    def __init__(self):
        self.history: List[Tuple[float, float, float]] = []

    def should_shutdown(
        self,
        lat: float,
        lng: float,
        ts: float,
        window_ms: float = config.AUTO_SHUTDOWN_WINDOW_MS,
        min_distance_m: float = config.AUTO_SHUTDOWN_MIN_DISTANCE_M,
    ) -> bool:
        if self.history and ts <= self.history[-1][0]:
            return False
        self.history.append((ts, lat, lng))
        cutoff = ts - window_ms
        self.history = [h for h in self.history if h[0] >= cutoff]
        if len(self.history) < 2:
            return False
        _, lat1, lng1 = self.history[0]
        _, lat2, lng2 = self.history[-1]
        return haversine_distance(lat1, lng1, lat2, lng2) < min_distance_m

    def reset(self):
        self.history = []
