# security.py
# 敏感資料處理：聯絡電話加密、學校信箱檢查
import base64
import logging
import re

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import ALLOWED_EMAIL_DOMAIN, ENCRYPTION_KEY, ENCRYPTION_SALT
from errors import ValidationError

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[0-9]{10,15}$")
KDF_ITERATIONS = 480_000


def build_fernet(raw_key: str, salt: str = ENCRYPTION_SALT) -> Fernet:
    """
    ENCRYPTION_KEY 可以直接給 Fernet.generate_key() 產生的金鑰；
    一般的密碼字串則用 PBKDF2 (加 salt) 轉成 Fernet 金鑰。
    """
    try:
        return Fernet(raw_key)
    except ValueError:
        # 不是 32 bytes 的 urlsafe base64，當作密碼處理
        pass

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode("utf-8"),
        iterations=KDF_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(str(raw_key).encode("utf-8"))))


_fernet = build_fernet(ENCRYPTION_KEY)


def normalize_phone_number(phone: str) -> str:
    """
    驗證並清洗電話號碼，只保留數字與開頭的 +。
    格式不符就拋出 ValidationError。
    """
    if phone is None or not str(phone).strip():
        raise ValidationError("whatsapp_number", "WhatsApp number is required")

    text = str(phone).strip()
    prefix = "+" if text.startswith("+") else ""
    digits = re.sub(r"\D", "", text)
    cleaned = prefix + digits

    if not PHONE_PATTERN.match(cleaned):
        raise ValidationError(
            "whatsapp_number",
            "Invalid phone number format. Please enter 10 to 15 digits.",
        )
    return cleaned


def encrypt_contact(phone: str) -> str:
    """驗證後加密，回傳可以直接存進資料庫的字串"""
    cleaned = normalize_phone_number(phone)
    return _fernet.encrypt(cleaned.encode("utf-8")).decode("ascii")


def decrypt_contact(token: str | None) -> str | None:
    """
    只在「授權揭露」的時候呼叫 (本人查看或接案成功的對方)。
    金鑰被換掉導致無法解密時回傳 None，並記錄錯誤 (不記錄號碼本身)。
    """
    if not token:
        return None
    try:
        return _fernet.decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.error("Stored contact number could not be decrypted (key rotated?)")
        return None


def whatsapp_link(phone: str | None) -> str | None:
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    return f"https://wa.me/{digits}" if digits else None


def is_institutional_email(email: str, domain: str = ALLOWED_EMAIL_DOMAIN) -> bool:
    if not email or "@" not in email:
        return False
    return email.strip().lower().endswith("@" + domain.lower())
