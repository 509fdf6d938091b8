# services/ratings.py
# 評價：寫入 / 更新一筆評價，並重新計算被評者的平均分數
import html
import logging
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import MAX_COMMENT_LENGTH, MAX_RECORD_ID, MAX_SCORE, MIN_SCORE
from db import transaction
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from models import Assignment, AssignmentRequest, Rating, User
from services.guest import ensure_member
from utils import parse_whole_number, utcnow

logger = logging.getLogger(__name__)


def display_rating(value) -> float:
    """顯示用：四捨五入到小數點後一位 (.05 進位)"""
    if not value:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _parse_id(name: str, value) -> int:
    if value is None or value == "":
        raise ValidationError(name, f"{name} is required")
    parsed = parse_whole_number(value)
    if parsed is None or not 1 <= parsed <= MAX_RECORD_ID:
        raise ValidationError(name, f"{name} must be a positive integer")
    return parsed


def _parse_score(value) -> int:
    message = f"Rating must be a whole number between {MIN_SCORE} and {MAX_SCORE}"
    if value is None or value == "":
        raise ValidationError("score", "score is required")

    score = parse_whole_number(value)
    if score is None or not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError("score", message)
    return score


def _clean_comment(comment) -> str | None:
    if comment is None:
        return None
    if not isinstance(comment, str):
        raise ValidationError("comment", "Comment must be text")
    text = comment.strip()
    if not text:
        return None
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError("comment", f"Comment must be at most {MAX_COMMENT_LENGTH} characters")
    # 評論會直接顯示在別人的頁面上，先做 HTML 跳脫
    return html.escape(text)


async def recompute_user_rating(session: AsyncSession, user_id: int) -> tuple[float, int]:
    """
    從 ratings 表重新計算平均分數與評價數量，寫回 users 的快取欄位。
    不自己 commit，由呼叫端的交易決定。
    """
    avg_score, count = (
        await session.execute(
            select(func.avg(Rating.score), func.count(Rating.id)).where(Rating.rated_id == user_id)
        )
    ).one()

    rating = float(avg_score) if count else 0.0
    await session.execute(
        update(User).where(User.id == user_id).values(rating=rating, total_ratings=count)
    )
    logger.info("Rating cache for user %s recomputed: %.2f over %d rating(s)", user_id, rating, count)
    return rating, count


async def submit_rating(
    session: AsyncSession,
    rater: dict,
    rated_id,
    assignment_request_id,
    score,
    comment=None,
) -> dict:
    """
    提交 (或修改) 一筆評價。在同一個交易內：
    1. 寫入或更新 ratings (同一人對同一需求只有一筆)
    2. 重新計算被評者的平均分數
    3. 把 assignment 與需求標記為 completed
    """
    ensure_member(rater)
    rated_id = _parse_id("rated_id", rated_id)
    request_id = _parse_id("assignment_request_id", assignment_request_id)
    score = _parse_score(score)
    comment = _clean_comment(comment)

    if rated_id == rater["id"]:
        raise AuthorizationError("You cannot rate yourself")

    now = utcnow()
    try:
        async with transaction(session):
            req = (
                await session.execute(
                    select(AssignmentRequest).where(AssignmentRequest.id == request_id)
                )
            ).scalar_one_or_none()
            if req is None:
                raise NotFoundError("Assignment request not found")

            assignment = (
                await session.execute(select(Assignment).where(Assignment.request_id == request_id))
            ).scalar_one_or_none()
            if assignment is None or {assignment.writer_id, assignment.client_id} != {rater["id"], rated_id}:
                raise AuthorizationError("You can only rate the other party of your own assignment")

            existing = (
                await session.execute(
                    select(Rating).where(
                        Rating.rater_id == rater["id"],
                        Rating.assignment_request_id == request_id,
                    )
                )
            ).scalar_one_or_none()

            if existing is not None:
                existing.score = score
                existing.comment = comment
                existing.created_at = now
                rating_row = existing
            else:
                rating_row = Rating(
                    rater_id=rater["id"],
                    rated_id=rated_id,
                    assignment_request_id=request_id,
                    score=score,
                    comment=comment,
                    created_at=now,
                )
                session.add(rating_row)
            await session.flush()

            average, total = await recompute_user_rating(session, rated_id)

            # 第一次評價的時間才算完成時間
            await session.execute(
                update(Assignment)
                .where(Assignment.id == assignment.id, Assignment.status != "completed")
                .values(status="completed", completed_at=now)
            )
            await session.execute(
                update(AssignmentRequest)
                .where(AssignmentRequest.id == request_id, AssignmentRequest.status == "assigned")
                .values(status="completed")
            )
    except IntegrityError:
        # 兩個請求同時替同一筆需求新增評價，其中一個撞到唯一約束
        logger.warning("Concurrent rating submission for request %s by user %s", request_id, rater["id"])
        raise ConflictError("Rating was submitted at the same time by another request, please retry")

    logger.info(
        "User %s rated user %s (%s stars) for request %s",
        rater["id"], rated_id, score, request_id,
    )
    return {
        "message": "Rating submitted successfully",
        "rating_id": rating_row.id,
        "rated_id": rated_id,
        "assignment_request_id": request_id,
        "score": score,
        "new_rating": display_rating(average),
        "total_ratings": total,
    }
