# services/assignment_requests.py
# 委託需求的生命週期：建立 -> (被接案 | 被刪除 | 過期清除)
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import (
    ACCEPTING_WRITER_STATUSES,
    ASSIGNMENT_EXPIRATION_DAYS,
    ASSIGNMENT_TYPES,
    COST_UNIT,
    MAX_ASSIGNMENT_TYPE_LENGTH,
    MAX_COURSE_CODE_LENGTH,
    MAX_COURSE_NAME_LENGTH,
    MAX_ESTIMATED_COST,
    MAX_NUM_PAGES,
)
from db import transaction
from errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SignInRequiredError,
    ValidationError,
)
from models import Assignment, AssignmentRequest, User
from security import decrypt_contact, whatsapp_link
from services.guest import ensure_member, is_guest, sample_requests
from services.ratings import display_rating
from utils import generate_unique_id, parse_whole_number, round_to_cost_unit, utcnow

logger = logging.getLogger(__name__)

NOT_AVAILABLE_MESSAGE = "Assignment request not found or already accepted"


# =========================================================
# 1. 輸入驗證 (全部在寫入資料庫之前完成)
# =========================================================

def _require_text(fields: dict, name: str, max_length: int) -> str:
    value = fields.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(name, f"{name} is required")
    # 超過長度直接截斷，不算錯誤
    return value.strip()[:max_length]


def _parse_assignment_type(fields: dict) -> str:
    raw = _require_text(fields, "assignment_type", MAX_ASSIGNMENT_TYPE_LENGTH)
    # 前端有時候送顯示名稱 (例如 "Lab Files")，統一轉成 key
    key = raw.lower().replace(" ", "_")
    if key not in ASSIGNMENT_TYPES:
        raise ValidationError(
            "assignment_type",
            f"assignment_type must be one of: {', '.join(ASSIGNMENT_TYPES)}",
        )
    return key


def _parse_num_pages(value) -> int:
    message = f"Number of pages must be a whole number between 1 and {MAX_NUM_PAGES}"
    if value is None or value == "":
        raise ValidationError("num_pages", "num_pages is required")

    pages = parse_whole_number(value)
    if pages is None or not 1 <= pages <= MAX_NUM_PAGES:
        raise ValidationError("num_pages", message)
    return pages


def _parse_deadline(value, now: datetime) -> datetime:
    if isinstance(value, datetime):
        deadline = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            deadline = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError("deadline", "Deadline must be a valid date")
    else:
        raise ValidationError("deadline", "deadline is required")

    # 沒有時區資訊一律當作 UTC
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)

    if deadline <= now:
        raise ValidationError("deadline", "Deadline must be in the future")
    return deadline


def _parse_cost(value) -> int:
    if value is None or value == "":
        raise ValidationError("estimated_cost", "estimated_cost is required")
    if isinstance(value, bool):
        raise ValidationError("estimated_cost", "Estimated cost must be a number")

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("estimated_cost", "Estimated cost must be a number")

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("estimated_cost", "Estimated cost must be greater than 0")
    if amount > MAX_ESTIMATED_COST:
        raise ValidationError(
            "estimated_cost", f"Estimated cost must be at most {MAX_ESTIMATED_COST}"
        )

    try:
        cost = round_to_cost_unit(amount)
    except InvalidOperation:
        raise ValidationError("estimated_cost", "Estimated cost must be a number")
    if cost <= 0:
        raise ValidationError(
            "estimated_cost",
            f"Estimated cost is too low; it must round to at least {COST_UNIT}",
        )
    return cost


def validate_request_fields(fields: dict, now: datetime | None = None) -> dict:
    """
    把使用者送來的欄位整理成可以直接寫入的資料。
    任何一個欄位不合格就拋出 ValidationError (帶 field 名稱)。
    """
    now = now or utcnow()
    return {
        "course_name": _require_text(fields, "course_name", MAX_COURSE_NAME_LENGTH),
        "course_code": _require_text(fields, "course_code", MAX_COURSE_CODE_LENGTH),
        "assignment_type": _parse_assignment_type(fields),
        "num_pages": _parse_num_pages(fields.get("num_pages")),
        "deadline": _parse_deadline(fields.get("deadline"), now),
        "estimated_cost": _parse_cost(fields.get("estimated_cost")),
    }


# =========================================================
# 2. 輸出格式
# =========================================================

def serialize_client(client: User) -> dict:
    # 公開資料而已，聯絡方式只有接案成功後才給
    return {
        "id": client.id,
        "name": client.name,
        "profile_picture": client.profile_picture,
        "rating": display_rating(client.rating),
        "total_ratings": client.total_ratings or 0,
    }


def serialize_request(req: AssignmentRequest, client: User | None = None) -> dict:
    data = {
        "id": req.id,
        "unique_id": req.unique_id,
        "client_id": req.client_id,
        "course_name": req.course_name,
        "course_code": req.course_code,
        "assignment_type": req.assignment_type,
        "num_pages": req.num_pages,
        "deadline": req.deadline,
        "estimated_cost": req.estimated_cost,
        "status": req.status,
        "created_at": req.created_at,
        "expiration_deadline": req.expiration_deadline,
    }
    if client is not None:
        data["client"] = serialize_client(client)
    return data


# =========================================================
# 3. 核心操作
# =========================================================

async def create_request(session: AsyncSession, user: dict, fields: dict) -> AssignmentRequest:
    ensure_member(user)
    data = validate_request_fields(fields)

    async with transaction(session):
        req = AssignmentRequest(
            client_id=user["id"],
            unique_id=generate_unique_id(),
            status="open",
            created_at=utcnow(),
            **data,
        )
        session.add(req)
        await session.flush()

    logger.info("Assignment request %s created by user %s", req.id, user["id"])
    return req


async def list_open_requests(session: AsyncSession, viewer: dict | None, now: datetime | None = None) -> list[dict]:
    """
    瀏覽頁：還沒過期的 open 需求，新的在前面。
    訪客只看得到固定的範例資料。
    """
    if viewer is None:
        raise SignInRequiredError()
    now = now or utcnow()
    if is_guest(viewer):
        return sample_requests(now)

    cutoff = now - timedelta(days=ASSIGNMENT_EXPIRATION_DAYS)
    stmt = (
        select(AssignmentRequest, User)
        .join(User, User.id == AssignmentRequest.client_id)
        .where(
            AssignmentRequest.status == "open",
            AssignmentRequest.created_at > cutoff,
        )
        .order_by(AssignmentRequest.created_at.desc(), AssignmentRequest.id.desc())
    )
    rows = (await session.execute(stmt)).all()
    return [serialize_request(req, client) for req, client in rows]


async def _load_request(session: AsyncSession, request_id: int) -> AssignmentRequest | None:
    # populate_existing：同一個 session 裡之前讀過的物件也要重新讀最新狀態
    stmt = (
        select(AssignmentRequest)
        .where(AssignmentRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def accept_request(session: AsyncSession, request_id: int, writer: dict) -> dict:
    """
    寫手接案。檢查順序 (第一個不符合的就失敗)：
    1. 寫手狀態必須是 active 或 busy
    2. 需求存在而且還是 open
    3. 不能接自己的需求
    4. 委託人帳號還在

    狀態轉換用「UPDATE ... WHERE status = 'open'」搶，
    同時有兩個人接同一筆時只有一個人的 UPDATE 會影響到資料列。
    """
    ensure_member(writer)

    async with transaction(session):
        writer_status = (
            await session.execute(select(User.writer_status).where(User.id == writer["id"]))
        ).scalar_one_or_none()
        if writer_status is None:
            raise NotFoundError("Writer account not found")
        if writer_status not in ACCEPTING_WRITER_STATUSES:
            raise ValidationError(
                "writer_status",
                "Please set your writer status to active or busy before accepting assignments",
            )

        req = await _load_request(session, request_id)
        if req is None or req.status != "open":
            raise ConflictError(NOT_AVAILABLE_MESSAGE, status_code=404)

        if req.client_id == writer["id"]:
            raise AuthorizationError("You cannot accept your own assignment request")

        client = (
            await session.execute(select(User).where(User.id == req.client_id))
        ).scalar_one_or_none()
        if client is None:
            raise NotFoundError("Client not found")

        result = await session.execute(
            update(AssignmentRequest)
            .where(AssignmentRequest.id == request_id, AssignmentRequest.status == "open")
            .values(status="assigned")
        )
        if result.rowcount != 1:
            # 在檢查之後、更新之前被別人搶走了
            raise ConflictError(NOT_AVAILABLE_MESSAGE, status_code=404)

        assignment = Assignment(
            request_id=request_id,
            writer_id=writer["id"],
            client_id=client.id,
            status="in_progress",
            created_at=utcnow(),
        )
        session.add(assignment)
        await session.flush()

    contact = decrypt_contact(client.whatsapp_number)
    logger.info(
        "Assignment request %s accepted by writer %s (assignment %s)",
        request_id, writer["id"], assignment.id,
    )
    return {
        "message": "Assignment accepted successfully",
        "assignment_id": assignment.id,
        "request_id": request_id,
        "client_id": client.id,
        "client_name": client.name,
        "client_whatsapp": contact,
        "client_whatsapp_redirect": whatsapp_link(contact),
    }


async def delete_request(session: AsyncSession, request_id: int, actor: dict) -> None:
    """只有委託人本人、而且需求還是 open 的時候才能刪"""
    ensure_member(actor)

    async with transaction(session):
        req = await _load_request(session, request_id)
        if req is None:
            raise NotFoundError("Assignment request not found")
        if req.client_id != actor["id"]:
            raise AuthorizationError("You can only delete your own assignment requests")
        if req.status != "open":
            raise ConflictError("Only open assignment requests can be deleted", status_code=403)

        result = await session.execute(
            delete(AssignmentRequest)
            .where(AssignmentRequest.id == request_id, AssignmentRequest.status == "open")
        )
        if result.rowcount != 1:
            raise ConflictError("Only open assignment requests can be deleted", status_code=403)

    logger.info("Assignment request %s deleted by user %s", request_id, actor["id"])
