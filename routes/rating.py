from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from db import getDB
from routes.auth import require_user
from schemas import RatingCreate
from services.ratings import submit_rating

router = APIRouter(prefix="/api", tags=["rating"])


# ------------------------------------------------------
# ⭐ POST：提交評價 (重送同一筆需求的評價 = 修改)
# ------------------------------------------------------
@router.post("/ratings", status_code=status.HTTP_201_CREATED)
async def create_rating(
    payload: RatingCreate,
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(getDB),
):
    return await submit_rating(
        db,
        user,
        rated_id=payload.rated_id,
        assignment_request_id=payload.assignment_request_id,
        score=payload.score,
        comment=payload.comment,
    )
