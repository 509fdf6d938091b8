from fastapi import APIRouter, Depends, File, Form, Path, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from config import MAX_RECORD_ID
from db import getDB
# 匯入通用的權限檢查
from routes.auth import end_session, require_member, require_user
from schemas import DeleteAccountRequest, WhatsappUpdate, WriterProfileUpdate
from services import users as service
# 匯入儲存作品檔案的工具函式
from utils import save_portfolio_file

# 設定 Router
router = APIRouter(prefix="/api", tags=["users"])


# =========================================================
# 1. 我的個人檔案
# =========================================================
@router.get("/profile")
async def get_my_profile(
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    return await service.get_profile(db, user)


@router.put("/profile/writer")
async def update_writer_profile(
    payload: WriterProfileUpdate,
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    return await service.update_writer_profile(db, user, payload.model_dump())


# 只改聯絡電話，不改 role (委託人也用這個)
@router.post("/update-whatsapp")
async def update_whatsapp(
    payload: WhatsappUpdate,
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    return await service.update_whatsapp(db, user, payload.whatsapp_number)


# =========================================================
# 2. 作品集 (可以給圖片網址，或直接上傳檔案)
# =========================================================
@router.post("/profile/portfolio")
async def update_portfolio(
    description: str | None = Form(None),
    sample_work_image: str | None = Form(None),
    sample_work: UploadFile | None = File(None),  # 檔案是非必填
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    # 情況 A: 有上傳檔案 -> 先存檔，路徑取代網址
    if sample_work is not None and sample_work.filename:
        sample_work_image = await save_portfolio_file(sample_work, user["id"])

    # 情況 B: 只更新文字或網址
    return await service.upsert_portfolio(db, user, description, sample_work_image)


# =========================================================
# 3. 寫手列表 / 寫手詳細資料
# =========================================================
@router.get("/writers")
async def list_writers(
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    return await service.list_writers(db)


@router.get("/writers/{writer_id}")
async def get_writer(
    writer_id: int = Path(le=MAX_RECORD_ID),
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    return await service.get_writer(db, writer_id)


# =========================================================
# 4. 我的案件 / 我收到的評價
# =========================================================
@router.get("/my-assignments")
async def my_assignments(
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    return await service.list_my_assignments(db, user)


@router.get("/my-ratings")
async def my_ratings(
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    return await service.list_my_ratings(db, user)


# =========================================================
# 5. 刪除帳號
# =========================================================
@router.delete("/delete-account")
async def delete_my_account(
    request: Request,
    payload: DeleteAccountRequest,
    user: dict = Depends(require_member),
    db: AsyncSession = Depends(getDB),
):
    await service.delete_account(db, user, payload.confirmDelete)
    end_session(request)
    return {"message": "Account deleted successfully"}
