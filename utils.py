import os
import secrets
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

import aiofiles  # 非同步檔案處理套件，避免上傳大檔案時卡住整個伺服器
from fastapi import UploadFile

from config import COST_UNIT, UPLOAD_ROOT
from errors import ValidationError

# --- 1. 檔案儲存路徑常數 ---
FOLDER_PORTFOLIOS = "portfolios"  # 子資料夾：存放寫手的作品範例

ALLOWED_SAMPLE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".pdf"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_to_cost_unit(value) -> int:
    """
    四捨五入到最接近的 COST_UNIT 倍數 (.5 一律進位)。
    例如 COST_UNIT=50 時：74 -> 50, 75 -> 100, 124.9 -> 100
    """
    units = (Decimal(str(value)) / COST_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(units) * COST_UNIT


def parse_whole_number(value) -> int | None:
    """
    int、整數值的 float、純數字字串 -> int；其他型別或格式一律回傳 None。
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        # 只接受 ASCII 數字 ("²" 的 isdigit() 也是 True)
        if not text.isascii() or not text.isdigit():
            return None
        try:
            return int(text)
        except ValueError:
            # 超長的數字字串
            return None
    return None


def generate_unique_id() -> str:
    # 100000 ~ 999999 的 6 位數字
    return str(100000 + secrets.randbelow(900000))


def setup_upload_directories(root: str = UPLOAD_ROOT):
    """
    確保上傳資料夾都已經存在 (伺服器啟動時呼叫)。
    """
    os.makedirs(os.path.join(root, FOLDER_PORTFOLIOS), exist_ok=True)


async def save_portfolio_file(file: UploadFile, user_id: int, root: str = UPLOAD_ROOT) -> str:
    """
    儲存寫手上傳的作品範例

    - 統一放在 uploads/portfolios/
    - 檔名包含 user_id 與時間戳記，避免互相覆蓋

    回傳相對路徑，例如 uploads/portfolios/user_1_20231225103000.png
    """
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in ALLOWED_SAMPLE_EXTENSIONS:
        raise ValidationError("sample_work", "Sample work must be an image or PDF file")

    target_dir = os.path.join(root, FOLDER_PORTFOLIOS)
    os.makedirs(target_dir, exist_ok=True)

    timestamp = utcnow().strftime("%Y%m%d%H%M%S")
    new_filename = f"user_{user_id}_{timestamp}{ext}"
    file_path = os.path.join(target_dir, new_filename)

    # 分塊寫入，大檔案也不會吃光記憶體
    async with aiofiles.open(file_path, "wb") as out_file:
        while content := await file.read(1024):
            await out_file.write(content)

    # 回傳給資料庫的路徑格式 (使用 / 分隔，確保跨平台相容性)
    return f"{root}/{FOLDER_PORTFOLIOS}/{new_filename}"
