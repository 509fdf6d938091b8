import logging
import time

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import GUEST_SESSION_MAX_AGE
from db import getDB  # 資料庫連線函式
from errors import SignInRequiredError
from models import User
from services.guest import build_guest_user, ensure_member
from services.users import get_or_create_user, principal_for

logger = logging.getLogger(__name__)

# --- 1. 設定 Router ---
router = APIRouter(prefix="/auth", tags=["auth"])


# --- 2. 核心依賴函式：取得當前登入者 ---
# 這是一個 "Dependency"，會在其他路由執行前先跑過一遍
async def get_current_user(request: Request, db: AsyncSession = Depends(getDB)) -> dict | None:
    """
    檢查 Session，返回目前的使用者 (dict)，未登入則返回 None。

    運作原理：
    1. 瀏覽器發送請求時會帶上 Cookie (Session)。
    2. 伺服器解開 Cookie 取得 "user_id" (或訪客資料 "guest_user")。
    3. 用這個 ID 去資料庫查是不是真的有這個人。
    """
    guest = request.session.get("guest_user")
    if guest:
        # 訪客模式只維持 2 小時
        if time.time() > request.session.get("guest_expires_at", 0):
            request.session.clear()
            return None
        return guest

    user_id = request.session.get("user_id")
    if not user_id:
        return None

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        request.session.clear()  # 如果 Session 資料怪怪的 (不是數字)，為了安全就清掉
        return None

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        # Session 有紀錄 ID，但資料庫找不到人 (可能刪除帳號了) -> 強制登出
        request.session.clear()
        return None

    return principal_for(user)


# --- 3. 權限控管依賴函式 ---
async def require_user(user: dict | None = Depends(get_current_user)) -> dict:
    """有登入就好 (訪客也算)"""
    if user is None:
        raise SignInRequiredError("Not authenticated")
    return user


async def require_member(user: dict | None = Depends(get_current_user)) -> dict:
    """必須是真正的會員，訪客不行"""
    return ensure_member(user)


# --- 4. 登入 / 登出 ---
async def complete_login(request: Request, db: AsyncSession, identity: dict) -> dict:
    """
    OAuth callback 拿到 Google 的身分資料後呼叫這裡：
    檢查學校信箱 -> 建立或更新使用者 -> 寫入 Session
    """
    user = await get_or_create_user(db, identity)
    request.session.clear()
    request.session["user_id"] = user.id
    logger.info("User %s signed in", user.id)
    return principal_for(user)


def end_session(request: Request):
    """登出與刪除帳號共用：把 Server 端認得這個人的 Session 清掉"""
    request.session.clear()


@router.post("/guest-login")
async def guest_login(request: Request):
    guest = build_guest_user()
    request.session.clear()
    request.session["guest_user"] = guest
    request.session["guest_expires_at"] = time.time() + GUEST_SESSION_MAX_AGE
    logger.info("Guest session started")
    return {"message": "Guest login successful", "user": guest}


@router.get("/status")
async def auth_status(user: dict | None = Depends(get_current_user)):
    return {
        "isAuthenticated": user is not None,
        "isGuest": bool(user and user.get("is_guest")),
        "user": user,
    }


@router.post("/logout")
@router.get("/logout")
async def handle_logout(request: Request):
    end_session(request)
    return {"message": "Logged out successfully"}
