"""
資料同步模組
讀取 /api/driver/data 並整合；同時進行中的多次呼叫合併為一次上游請求
"""
import asyncio
import logging
from typing import Optional

from shuttle_driver.modules.api import DriverApiClient
from shuttle_driver.modules.models import Snapshot
from shuttle_driver.modules.reconcile import reconcile

logger = logging.getLogger("shuttle-driver.sync")


class DataSynchronizer:
    def __init__(self, api: DriverApiClient):
        self.api = api
        self._inflight: Optional[asyncio.Task] = None
        self.fetch_count = 0

    async def fetch_all(self) -> Snapshot:
        """
        取得並整合所有資料

        已有進行中的請求時直接等待同一個結果；
        上游失敗回傳空的 Snapshot（呼叫端應視為同步失敗，而非沒有資料）
        """
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch())
        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> Snapshot:
        try:
            self.fetch_count += 1
            data = await self.api.fetch_driver_data()
            snapshot = reconcile(data)
            logger.info(
                f"Synced {len(snapshot.trips)} trips, "
                f"{len(snapshot.trip_passengers)} legs, "
                f"{len(snapshot.all_passengers)} passengers"
            )
            return snapshot
        except Exception as e:
            logger.error(f"Driver data sync failed: {type(e).__name__}: {e}")
            return Snapshot()
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None

    def reset(self):
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
