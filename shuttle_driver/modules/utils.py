"""
通用工具函數模組
時間、日期、站點名稱的正規化與排序；所有函數皆不拋出例外，
格式不符時回傳定義好的預設值
"""
import re
import time
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from shuttle_driver import config

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


# ========== 時間工具 ==========
def local_tz() -> ZoneInfo:
    return ZoneInfo(config.TIMEZONE)


def now_ms() -> int:
    return int(time.time() * 1000)


def tz_now(ts_ms: Optional[float] = None) -> datetime:
    """台北時間 now（作為時間比較用）；可指定毫秒時間戳"""
    if ts_ms is None:
        return datetime.now(local_tz())
    return datetime.fromtimestamp(ts_ms / 1000, local_tz())


def day_key(ts_ms: Optional[float] = None) -> str:
    """取得當地日期字串（YYYYMMDD），作為每日通知記錄的 key"""
    return tz_now(ts_ms).strftime("%Y%m%d")


def today_iso(ts_ms: Optional[float] = None) -> str:
    """取得今天的日期（YYYY/MM/DD，與班次日期格式一致）"""
    return tz_now(ts_ms).strftime("%Y/%m/%d")


def normalize_time(raw: str) -> str:
    """
    時間格式正規化：將單數字小時補成兩位數
    例如："0:50" -> "00:50", "8:30" -> "08:30"；其他格式原樣回傳
    """
    if not raw:
        return raw
    m = _TIME_RE.match(raw)
    if not m:
        return raw
    return f"{m.group(1).zfill(2)}:{m.group(2)}"


def normalize_datetime(raw: str) -> str:
    """日期時間字串正規化：只處理時間部分，非「日期 時間」兩段者原樣回傳"""
    if not raw:
        return raw
    parts = raw.strip().split(" ")
    if len(parts) != 2:
        return raw
    return f"{parts[0]} {normalize_time(parts[1])}"


def normalize_date(raw: str) -> str:
    """統一日期格式為 YYYY/MM/DD 的分隔符"""
    return (raw or "").replace("-", "/")


def canonical_datetime(date: str, time_hm: str) -> str:
    """由班次日期與時間組成主班次時間字串（YYYY/MM/DD HH:MM）"""
    return f"{normalize_date(date)} {normalize_time(time_hm)}"


def parse_datetime(raw: str) -> int:
    """
    解析日期時間字串為毫秒時間戳（當地時間）

    接受 YYYY-MM-DD / YYYY/MM/DD 與可選的 HH:MM；
    缺少的月、日補 01，缺少的時間補 00:00；空字串或無法解析回傳 0
    """
    if not raw or not raw.strip():
        return 0
    parts = raw.strip().split(" ")
    date_part = parts[0]
    time_part = parts[1] if len(parts) > 1 else ""

    d = date_part.replace("-", "/").split("/")
    y = d[0] if len(d) > 0 and d[0] else "0000"
    mo = d[1] if len(d) > 1 and d[1] else "01"
    day = d[2] if len(d) > 2 and d[2] else "01"

    hh, mm = "00", "00"
    if time_part:
        tparts = time_part.split(":")
        hh = tparts[0] or "00"
        mm = tparts[1] if len(tparts) > 1 and tparts[1] else "00"

    try:
        dt = datetime(int(y), int(mo), int(day), int(hh), int(mm), tzinfo=local_tz())
    except (ValueError, TypeError, OverflowError):
        return 0
    return int(dt.timestamp() * 1000)


def format_datetime_label(raw: Optional[str]) -> str:
    """顯示用日期時間：補零為 YYYY/MM/DD HH:MM"""
    if not raw:
        return ""
    parts = raw.split(" ")
    date_part = parts[0]
    time_part = parts[1] if len(parts) > 1 else ""
    if not date_part:
        return raw
    d = date_part.replace("-", "/").split("/")
    if len(d) != 3:
        return raw
    y, m, day = d
    if time_part:
        tparts = time_part.split(":")
        h = tparts[0] or "00"
        mm = tparts[1] if len(tparts) > 1 else "00"
        time_part = f"{h.zfill(2)}:{mm.zfill(2)}"
    return f"{y}/{m.zfill(2)}/{day.zfill(2)} {time_part}"


def is_within_action_window(ts_ms: int, now: int, window_minutes: int = config.ACTION_WINDOW_MINUTES) -> bool:
    """時間點是否在現在前後 window_minutes 分鐘內"""
    return abs(ts_ms - now) <= window_minutes * 60 * 1000


# ========== 站點工具 ==========
def _has_any(raw: str, tokens) -> bool:
    return any(t in raw for t in tokens)


def normalize_station(station: str, direction: str = "", updown: str = "") -> str:
    """
    將自由文字站點名稱對應到五個固定站點

    飯店預設為「去」，只有回程且該段為下車時才標為「回」；
    無法辨識者原樣回傳，空字串則為「其他站點」
    """
    raw = (station or "").strip()
    if _has_any(raw, config.HOTEL_TOKENS):
        if (direction or "") == config.DIRECTION_BACK and (updown or "") == config.DOWN_TEXT:
            return config.STATION_HOTEL_BACK
        return config.STATION_HOTEL_GO
    if _has_any(raw, config.MRT_TOKENS):
        return config.STATION_MRT
    if _has_any(raw, config.TRAIN_TOKENS):
        return config.STATION_TRAIN
    if _has_any(raw, config.MALL_TOKENS):
        return config.STATION_MALL
    return raw or config.STATION_OTHER


def station_sort_order(label: str) -> int:
    try:
        return config.STATION_ORDER.index(label)
    except ValueError:
        return config.STATION_SORT_LAST


# ========== 數值工具 ==========
def safe_int(v, default: int = 0) -> int:
    """安全轉 int，用在人數欄位"""
    try:
        s = str(v).strip()
        if not s:
            return default
        return int(float(s))
    except Exception:
        return default
