"""
Firebase 管理模組
處理 Firebase Admin SDK 的初始化和讀寫（司機端偏好設定的遠端儲存）
"""
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials, db

from shuttle_driver import config

logger = logging.getLogger("shuttle-driver.firebase")

# Firebase 初始化狀態
_firebase_initialized = False


def init_firebase() -> bool:
    """
    初始化 Firebase Admin SDK

    Returns:
        bool: 初始化是否成功
    """
    global _firebase_initialized

    if _firebase_initialized:
        return True

    try:
        if not firebase_admin._apps:
            service_account_path = os.environ.get(
                "FIREBASE_SERVICE_ACCOUNT", "service_account.json"
            )
            if os.path.exists(service_account_path):
                cred = credentials.Certificate(service_account_path)
                logger.info("Firebase: Using service account file")
            else:
                cred = credentials.ApplicationDefault()
                logger.info("Firebase: Using ApplicationDefault credentials")

            firebase_admin.initialize_app(cred, {"databaseURL": config.FIREBASE_RTDB_URL})
            logger.info(f"Firebase: Initialization successful ({config.FIREBASE_RTDB_URL})")

        _firebase_initialized = True
        return True
    except Exception as e:
        logger.error(f"Firebase initialization failed: {type(e).__name__}: {str(e)}")
        return False


# ========== 司機裝置偏好設定 ==========
DEVICE_ROOT = "/driver_devices"


def prefs_path(device_id: str, key: Optional[str] = None) -> str:
    """裝置偏好設定的 RTDB 路徑：/driver_devices/{device_id}/prefs[/{key}]"""
    root = f"{DEVICE_ROOT}/{device_id}/prefs"
    return f"{root}/{key}" if key else root


def _prefs_ref(device_id: str, key: Optional[str] = None):
    if not _firebase_initialized and not init_firebase():
        raise RuntimeError("Firebase not initialized")
    return db.reference(prefs_path(device_id, key))


def read_pref(device_id: str, key: str) -> Optional[str]:
    """讀取單一偏好設定；不存在或讀取失敗回傳 None（數值一律轉成字串）"""
    try:
        value = _prefs_ref(device_id, key).get()
    except Exception as e:
        logger.error(f"Read pref {key} for {device_id} failed: {e}")
        return None
    return None if value is None else str(value)


def write_pref(device_id: str, key: str, value: str) -> bool:
    try:
        _prefs_ref(device_id, key).set(value)
        return True
    except Exception as e:
        logger.error(f"Write pref {key} for {device_id} failed: {e}")
        return False


def remove_pref(device_id: str, key: str) -> bool:
    try:
        _prefs_ref(device_id, key).delete()
        return True
    except Exception as e:
        logger.error(f"Remove pref {key} for {device_id} failed: {e}")
        return False
