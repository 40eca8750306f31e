"""
偏好設定儲存模組
司機端本地狀態（每日通知記錄、最後位置、定位提供者開關等）的 key/value 儲存
"""
import asyncio
import logging
from typing import Dict, Optional

from shuttle_driver import config
from shuttle_driver.modules import firebase

logger = logging.getLogger("shuttle-driver.prefs")


class Preferences:
    """字串 key/value 儲存介面；讀寫皆為 await 點"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str):
        raise NotImplementedError

    async def remove(self, key: str):
        raise NotImplementedError

    async def get_bool(self, key: str, default: bool = False) -> bool:
        value = await self.get(key)
        if value is None:
            return default
        return value == "true"

    async def get_int(self, key: str, default: int) -> int:
        value = await self.get(key)
        try:
            return int(value) if value is not None else default
        except ValueError:
            return default

    async def set_bool(self, key: str, value: bool):
        await self.set(key, "true" if value else "false")


class MemoryPreferences(Preferences):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str):
        self._values[key] = value

    async def remove(self, key: str):
        self._values.pop(key, None)


class FirebasePreferences(Preferences):
    """存放於 Realtime Database：/driver_devices/{device_id}/prefs/{key}"""

    def __init__(self, device_id: str = config.DEVICE_ID):
        self.device_id = device_id

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(firebase.read_pref, self.device_id, key)

    async def set(self, key: str, value: str):
        ok = await asyncio.to_thread(firebase.write_pref, self.device_id, key, value)
        if not ok:
            logger.warning(f"Preference write failed: {key}")

    async def remove(self, key: str):
        await asyncio.to_thread(firebase.remove_pref, self.device_id, key)


def build_preferences(backend: str = config.PREFS_BACKEND) -> Preferences:
    if backend == "firebase":
        if not firebase.init_firebase():
            logger.warning("Firebase unavailable, falling back to in-memory preferences")
            return MemoryPreferences()
        return FirebasePreferences()
    return MemoryPreferences()
