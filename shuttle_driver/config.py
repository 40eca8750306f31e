"""
配置管理模組
統一管理司機端所有配置常數和環境變數
"""
import os

# ========== 後端 API 配置 ==========
API_BASE = os.environ.get(
    "DRIVER_API_BASE", "https://driver-api2-995728097341.asia-east1.run.app"
)
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15"))

# ========== 時區 ==========
TIMEZONE = os.environ.get("TZ_NAME", "Asia/Taipei")

# ========== QR Code 核銷配置 ==========
QR_PREFIX = "FT"
FLUSH_DELAY_SECONDS = float(os.environ.get("FLUSH_DELAY_SECONDS", "5"))
SCAN_OVERDUE_MINUTES = 60  # 發車後超過此分鐘數視為逾期
SCAN_EARLY_MINUTES = 30  # 發車前早於此分鐘數不可核銷
ACTION_WINDOW_MINUTES = 60

# ========== 乘車狀態文字 ==========
BOARDED_TEXT = "已上車"
NO_SHOW_TEXT = "No-show"
UP_TEXT = "上車"
DOWN_TEXT = "下車"
DIRECTION_GO = "去程"
DIRECTION_BACK = "回程"

# ========== 站點顯示順序 ==========
STATION_HOTEL_GO = "1. 福泰大飯店 (去)"
STATION_MRT = "2. 南港捷運站"
STATION_TRAIN = "3. 南港火車站"
STATION_MALL = "4. LaLaport 購物中心"
STATION_HOTEL_BACK = "5. 福泰大飯店 (回)"
STATION_OTHER = "其他站點"

STATION_ORDER = [
    STATION_HOTEL_GO,
    STATION_MRT,
    STATION_TRAIN,
    STATION_MALL,
    STATION_HOTEL_BACK,
]
STATION_SORT_LAST = 999

# 站點名稱比對關鍵字（子字串比對）
HOTEL_TOKENS = ("福泰大飯店", "Forte Hotel")
MRT_TOKENS = ("南港展覽館捷運站", "Nangang Exhibition Center", "南港捷運站", "捷運南港展覽館站")
TRAIN_TOKENS = ("南港火車站", "Nangang Train Station")
MALL_TOKENS = ("LaLaport",)

# 僅用於單段推斷站點欄位（與後端 passenger_list 產生規則一致）
INFER_HOTEL_TOKENS = ("福泰", "Forte")
INFER_MRT_TOKENS = ("捷運", "Exhibition")
INFER_TRAIN_TOKENS = ("火車", "Train")
INFER_MALL_TOKENS = ("LaLaport", "Lalaport")

# 上下車摘要用的站點顯示名稱（hotel_go / mrt / train / mall / hotel_back）
WAYPOINT_DISPLAY_NAMES = {
    "hotel_go": "福泰大飯店 (去)",
    "mrt": "南港捷運站",
    "train": "南港火車站",
    "mall": "LaLaport 購物中心",
    "hotel_back": "福泰大飯店 (回)",
}

# ========== GPS 定位配置 ==========
LOCATION_DEBOUNCE_MS = int(os.environ.get("LOCATION_DEBOUNCE_MS", "1000"))
PROVIDER_CACHE_MS = 5000  # 定位提供者快取（毫秒）
DEFAULT_GPS_INTERVAL_MINUTES = 3
MIN_GPS_INTERVAL_MINUTES = 3
PROVIDER_PRIMARY = "google"
PROVIDER_SECONDARY = "hypertrack"

# ========== 自動關閉定位 ==========
AUTO_SHUTDOWN_WINDOW_MS = 30 * 60 * 1000  # 觀察窗（30分鐘，毫秒）
AUTO_SHUTDOWN_MIN_DISTANCE_M = 500  # 位移低於此距離即關閉
EARTH_RADIUS_M = 6371000

# ========== 資料同步配置 ==========
DEFAULT_DATA_INTERVAL_MINUTES = int(os.environ.get("DATA_UPDATE_INTERVAL", "5"))
BACKGROUND_DATA_INTERVAL_MINUTES = 30
SYNC_WINDOW_START = 7 * 60  # 07:00
SYNC_WINDOW_END = 22 * 60  # 22:00

# ========== 通知配置 ==========
NOTIFY_LEAD_MINUTES = 30
NOTIFY_CLAMP_SECONDS = 10  # 提醒時間已過但班次未發車時，延後幾秒觸發
NOTIFICATION_TITLE = "汐止福泰接駁車_系統通知"
NOTIFICATION_CHANNEL_PREFIX = "departures_vibrate_"
DEFAULT_SOUND = "notify_sound_1"

# ========== 偏好設定儲存 ==========
PREFS_BACKEND = os.environ.get("PREFS_BACKEND", "memory")  # memory / firebase
GOOGLE_CLOUD_PROJECT = os.environ.get("GOOGLE_CLOUD_PROJECT", "shuttle-system-487204")
FIREBASE_RTDB_URL = os.environ.get(
    "FIREBASE_RTDB_URL",
    f"https://{GOOGLE_CLOUD_PROJECT}-default-rtdb.asia-southeast1.firebasedatabase.app/"
)
DEVICE_ID = os.environ.get("DEVICE_ID", "driver-device")
DEFAULT_DRIVER_ROLE = os.environ.get("DRIVER_ROLE", "driverA")

# ========== 背景循環 ==========
ENABLE_BACKGROUND_LOOPS = os.environ.get("ENABLE_BACKGROUND_LOOPS", "false").lower() in (
    "true", "1", "yes"
)

# ========== Port ==========
PORT = int(os.environ.get("PORT", 8080))
