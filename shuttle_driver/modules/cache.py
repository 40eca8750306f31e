"""
快取管理模組
短時間 TTL 快取（例如定位提供者的選擇），避免熱路徑上重複讀取偏好設定
"""
import time
from typing import Any, Callable, Optional


def _wall_ms() -> float:
    return time.time() * 1000


class TimedCache:
    """單一值的 TTL 快取；時間來源可注入以便測試"""

    def __init__(self, ttl_ms: float, clock: Callable[[], float] = _wall_ms):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._value: Any = None
        self._fetched_at: Optional[float] = None

    def get(self) -> Optional[Any]:
        """
        取得快取值

        Returns:
            快取的值，如果已過期或未設定則返回 None
        """
        if self._fetched_at is None or self._value is None:
            return None
        if self._clock() - self._fetched_at >= self.ttl_ms:
            return None
        return self._value

    def set(self, value: Any):
        """更新快取"""
        self._value = value
        self._fetched_at = self._clock()

    def invalidate(self):
        """清除快取"""
        self._value = None
        self._fetched_at = None
