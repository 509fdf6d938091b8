from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import MAX_RECORD_ID
from db import getDB
from routes.auth import require_user
from schemas import AssignmentRequestCreate
from services import assignment_requests as service

# 設定 Router
router = APIRouter(prefix="/api/assignment-requests", tags=["assignment-requests"])


# =========================================================
# 1. 發布委託需求
# =========================================================
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_assignment_request(
    payload: AssignmentRequestCreate,
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    req = await service.create_request(db, user, payload.model_dump())
    return service.serialize_request(req)


# =========================================================
# 2. 瀏覽可接的需求 (訪客看到範例資料)
# =========================================================
@router.get("")
async def list_assignment_requests(
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    return await service.list_open_requests(db, user)


# =========================================================
# 3. 寫手接案
# =========================================================
@router.post("/{request_id}/accept")
async def accept_assignment_request(
    request_id: int = Path(le=MAX_RECORD_ID),
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    return await service.accept_request(db, request_id, user)


# =========================================================
# 4. 委託人刪除自己的需求
# =========================================================
@router.delete("/{request_id}")
async def delete_assignment_request(
    request_id: int = Path(le=MAX_RECORD_ID),
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    await service.delete_request(db, request_id, user)
    return {"message": "Assignment request deleted successfully"}
