"""
發車提醒排程模組
以「班次時間 - 提前分鐘數」產生穩定的通知 ID，並以當天日期記錄已排程的 ID，
避免同一天重複排程相同提醒
"""
import logging
from typing import Callable, Dict, Iterable, Set, Tuple

from shuttle_driver import config
from shuttle_driver.modules import utils
from shuttle_driver.modules.boarding import trip_timestamp
from shuttle_driver.modules.models import DepartureNotification, Trip
from shuttle_driver.modules.prefs import Preferences

logger = logging.getLogger("shuttle-driver.notification")


class Notifier:
    """本地通知排程介面（實際推播由裝置端負責）"""

    async def schedule(self, notification: DepartureNotification):
        raise NotImplementedError


class LogNotifier(Notifier):
    def __init__(self):
        self.scheduled = []

    async def schedule(self, notification: DepartureNotification):
        self.scheduled.append(notification)
        logger.info(f"Notification {notification.id} scheduled at {notification.at_ms}: {notification.body}")


def notification_id(trip_ms: int, lead_minutes: int) -> int:
    return (trip_ms - lead_minutes * 60 * 1000) // 1000


def scheduled_key(now: int) -> str:
    return f"scheduled_ids_{utils.day_key(now)}"


class NotificationScheduler:
    """
    發車提醒排程

    已排程的 ID 依當天日期持久化；另在記憶體中保留已認領的 ID，
    讓重疊的排程呼叫（資料循環與手動觸發）在等待偏好設定讀寫時不會重複排程
    """

    def __init__(
        self,
        prefs: Preferences,
        notifier: Notifier,
        clock: Callable[[], int] = utils.now_ms,
        platform: str = "android",
    ):
        self.prefs = prefs
        self.notifier = notifier
        self.clock = clock
        self.platform = platform
        self._claimed: Set[Tuple[str, str]] = set()
        self._marked: Dict[str, Set[str]] = {}

    async def _load_ids(self, key: str) -> Set[str]:
        stored = await self.prefs.get(key)
        return {s for s in (stored or "").split(",") if s}

    async def is_scheduled(self, trip_ms: int, lead_minutes: int) -> bool:
        ids = await self._load_ids(scheduled_key(self.clock()))
        return str(notification_id(trip_ms, lead_minutes)) in ids

    async def mark_scheduled(self, trip_ms: int, lead_minutes: int):
        key = scheduled_key(self.clock())
        marked = self._marked.setdefault(key, set())
        marked.add(str(notification_id(trip_ms, lead_minutes)))
        ids = await self._load_ids(key)
        # 合併本程序已記錄的 ID，重疊的寫入不會互相覆蓋
        ids |= marked
        await self.prefs.set(key, ",".join(sorted(ids)))

    def channel_id(self, sound_id: str):
        if self.platform != "android":
            return None
        return f"{config.NOTIFICATION_CHANNEL_PREFIX}{sound_id}"

    async def schedule_departure(
        self,
        trip_ms: int,
        lead_minutes: int = config.NOTIFY_LEAD_MINUTES,
        sound_enabled: bool = False,
        sound_id: str = config.DEFAULT_SOUND,
        skip_dedup: bool = False,
    ) -> bool:
        """
        排程發車提醒

        Returns:
            bool: 是否真的送出排程（已排過、班次已過或失敗皆為 False）
        """
        now = self.clock()
        nid = notification_id(trip_ms, lead_minutes)
        claim = (scheduled_key(now), str(nid))
        if not skip_dedup and claim in self._claimed:
            return False
        if trip_ms <= now:
            return False

        # 第一個 await 之前認領，排程失敗時釋放
        self._claimed.add(claim)
        try:
            if not skip_dedup and await self.is_scheduled(trip_ms, lead_minutes):
                return False

            notify_at = trip_ms - lead_minutes * 60 * 1000
            if notify_at < now:
                notify_at = now + config.NOTIFY_CLAMP_SECONDS * 1000

            time_str = utils.tz_now(trip_ms).strftime("%H:%M")
            notification = DepartureNotification(
                id=nid,
                title=config.NOTIFICATION_TITLE,
                body=f"班次【{time_str} 】即將發車，請準備前往接駁",
                at_ms=notify_at,
                channel_id=self.channel_id(sound_id),
                sound=sound_id if sound_enabled else None,
            )
            await self.notifier.schedule(notification)
        except Exception as e:
            self._claimed.discard(claim)
            logger.error(f"Schedule departure notification failed: {e}", exc_info=True)
            return False

        try:
            await self.mark_scheduled(trip_ms, lead_minutes)
        except Exception as e:
            logger.error(f"Persist scheduled notification id failed: {e}")
        return True

    def reset(self):
        self._claimed.clear()
        self._marked.clear()

    async def schedule_today(
        self,
        trips: Iterable[Trip],
        lead_minutes: int = config.NOTIFY_LEAD_MINUTES,
        sound_enabled: bool = True,
        sound_id: str = config.DEFAULT_SOUND,
    ) -> int:
        """為今天的所有班次排程提醒，回傳新排程數量"""
        today = utils.today_iso(self.clock())
        count = 0
        for t in trips:
            if utils.normalize_date(t.date) != today:
                continue
            trip_ms = trip_timestamp(t)
            if not trip_ms:
                continue
            if await self.schedule_departure(trip_ms, lead_minutes, sound_enabled, sound_id):
                count += 1
        return count
