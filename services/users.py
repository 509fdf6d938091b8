# services/users.py
# 個人檔案、寫手列表、我的案件 / 評價、刪除帳號
import logging

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from config import (
    ACCEPTING_WRITER_STATUSES,
    DELETE_ACCOUNT_CONFIRMATION,
    WRITER_STATUSES,
)
from db import transaction
from errors import AuthorizationError, NotFoundError, ValidationError
from models import Assignment, AssignmentRequest, Portfolio, Rating, User
from security import (
    decrypt_contact,
    encrypt_contact,
    is_institutional_email,
    normalize_phone_number,
    whatsapp_link,
)
from services.assignment_requests import serialize_client, serialize_request
from services.guest import ensure_member
from services.ratings import display_rating, recompute_user_rating
from utils import utcnow

logger = logging.getLogger(__name__)


# =========================================================
# 1. 登入時建立 / 更新使用者
# =========================================================

async def get_or_create_user(session: AsyncSession, identity: dict) -> User:
    """
    OAuth 登入完成後呼叫，identity 需要 google_id、email、name，picture 可有可無。
    只有學校信箱可以註冊，新使用者預設為 client / inactive。
    """
    email = (identity.get("email") or "").strip().lower()
    google_id = identity.get("google_id")
    if not google_id:
        raise ValidationError("google_id", "google_id is required")
    if not is_institutional_email(email):
        logger.warning("Rejected sign-in from a non-institutional email domain")
        raise AuthorizationError("Only university students with an institutional email can sign up")

    async with transaction(session):
        user = (
            await session.execute(select(User).where(User.google_id == google_id))
        ).scalar_one_or_none()

        if user is None:
            user = User(
                google_id=google_id,
                email=email,
                name=identity.get("name") or email.split("@")[0],
                profile_picture=identity.get("picture"),
                role="client",
                writer_status="inactive",
            )
            session.add(user)
            await session.flush()
            logger.info("New user %s signed up", user.id)
        else:
            # 名字與大頭貼以 Google 上的最新資料為準
            user.name = identity.get("name") or user.name
            user.profile_picture = identity.get("picture") or user.profile_picture
    return user


def principal_for(user: User) -> dict:
    """session 裡使用的「目前使用者」格式"""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "profile_picture": user.profile_picture,
        "role": user.role,
        "writer_status": user.writer_status,
        "is_guest": False,
    }


# =========================================================
# 2. 個人檔案
# =========================================================

def _serialize_portfolio(portfolio: Portfolio | None) -> dict | None:
    if portfolio is None:
        return None
    return {
        "sample_work_image": portfolio.sample_work_image,
        "description": portfolio.description,
        "updated_at": portfolio.updated_at,
    }


async def _get_member_row(session: AsyncSession, user_id: int) -> User:
    user = (
        await session.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _get_portfolio(session: AsyncSession, user_id: int) -> Portfolio | None:
    return (
        await session.execute(select(Portfolio).where(Portfolio.writer_id == user_id))
    ).scalar_one_or_none()


async def get_profile(session: AsyncSession, user: dict) -> dict:
    """本人的完整資料，包含解密後的 WhatsApp 號碼"""
    ensure_member(user)

    async with transaction(session):
        rating, total = await recompute_user_rating(session, user["id"])
        me = await _get_member_row(session, user["id"])
        portfolio = await _get_portfolio(session, user["id"])

    return {
        "id": me.id,
        "name": me.name,
        "email": me.email,
        "profile_picture": me.profile_picture,
        "university_stream": me.university_stream,
        "role": me.role,
        "writer_status": me.writer_status,
        "whatsapp_number": decrypt_contact(me.whatsapp_number),
        "rating": display_rating(rating),
        "total_ratings": total,
        "portfolio": _serialize_portfolio(portfolio),
        "created_at": me.created_at,
    }


async def update_writer_profile(session: AsyncSession, user: dict, fields: dict) -> dict:
    """
    更新寫手資料。只會改有送來的欄位；
    有送寫手欄位 (writer_status / university_stream) 的人 role 才會變成 writer，
    只改電話不影響身分。
    """
    ensure_member(user)
    values = {}

    if fields.get("university_stream") is not None:
        stream = str(fields["university_stream"]).strip()
        values["university_stream"] = stream[:255] or None

    if fields.get("writer_status") is not None:
        writer_status = str(fields["writer_status"]).strip().lower()
        if writer_status not in WRITER_STATUSES:
            raise ValidationError(
                "writer_status", f"writer_status must be one of: {', '.join(WRITER_STATUSES)}"
            )
        values["writer_status"] = writer_status

    if values:
        values["role"] = "writer"

    if fields.get("whatsapp_number") is not None:
        # 驗證失敗會拋出 ValidationError("whatsapp_number")
        values["whatsapp_number"] = encrypt_contact(fields["whatsapp_number"])

    if not values:
        raise ValidationError("writer_status", "Nothing to update")

    values["updated_at"] = utcnow()

    async with transaction(session):
        await _get_member_row(session, user["id"])
        await session.execute(update(User).where(User.id == user["id"]).values(**values))

    logger.info("Writer profile of user %s updated (%s)", user["id"], ", ".join(sorted(values)))
    return {"message": "Writer profile updated successfully"}


async def update_whatsapp(session: AsyncSession, user: dict, whatsapp_number) -> dict:
    """
    只更新聯絡電話 (委託人和寫手都可以用)，不會改動 role。
    """
    ensure_member(user)
    encrypted = encrypt_contact(whatsapp_number)
    cleaned = normalize_phone_number(whatsapp_number)

    async with transaction(session):
        await _get_member_row(session, user["id"])
        await session.execute(
            update(User)
            .where(User.id == user["id"])
            .values(whatsapp_number=encrypted, updated_at=utcnow())
        )

    logger.info("WhatsApp number of user %s updated", user["id"])
    return {
        "message": "WhatsApp number updated successfully",
        "whatsapp_redirect": whatsapp_link(cleaned),
    }


async def upsert_portfolio(
    session: AsyncSession,
    user: dict,
    description: str | None,
    sample_work_image: str | None,
) -> dict:
    ensure_member(user)
    description = description.strip() if description else None
    sample_work_image = sample_work_image.strip() if sample_work_image else None

    async with transaction(session):
        await _get_member_row(session, user["id"])
        portfolio = await _get_portfolio(session, user["id"])
        if portfolio is None:
            portfolio = Portfolio(writer_id=user["id"])
            session.add(portfolio)
        if description is not None:
            portfolio.description = description
        if sample_work_image is not None:
            portfolio.sample_work_image = sample_work_image
        portfolio.updated_at = utcnow()
        await session.flush()

    logger.info("Portfolio of user %s saved", user["id"])
    return {"message": "Portfolio updated successfully", "portfolio": _serialize_portfolio(portfolio)}


# =========================================================
# 3. 寫手列表 (公開資料，不含聯絡方式)
# =========================================================

def _serialize_writer(writer: User, portfolio: Portfolio | None) -> dict:
    return {
        "id": writer.id,
        "name": writer.name,
        "profile_picture": writer.profile_picture,
        "university_stream": writer.university_stream,
        "writer_status": writer.writer_status,
        "rating": display_rating(writer.rating),
        "total_ratings": writer.total_ratings or 0,
        "sample_work_image": portfolio.sample_work_image if portfolio else None,
        "portfolio_description": portfolio.description if portfolio else None,
    }


async def list_writers(session: AsyncSession) -> list[dict]:
    stmt = (
        select(User, Portfolio)
        .outerjoin(Portfolio, Portfolio.writer_id == User.id)
        .where(User.writer_status.in_(ACCEPTING_WRITER_STATUSES))
        .order_by(User.rating.desc(), User.total_ratings.desc(), User.id)
    )
    rows = (await session.execute(stmt)).all()
    return [_serialize_writer(writer, portfolio) for writer, portfolio in rows]


async def get_writer(session: AsyncSession, writer_id: int) -> dict:
    async with transaction(session):
        await recompute_user_rating(session, writer_id)
        writer = (
            await session.execute(
                select(User).where(User.id == writer_id).execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if writer is None:
            raise NotFoundError("Writer not found")
        portfolio = await _get_portfolio(session, writer_id)
    return _serialize_writer(writer, portfolio)


# =========================================================
# 4. 我的案件 / 我收到的評價
# =========================================================

def _counterpart_contact(user: User | None) -> dict:
    contact = decrypt_contact(user.whatsapp_number) if user is not None else None
    return {"whatsapp": contact, "whatsapp_redirect": whatsapp_link(contact)}


async def list_my_assignments(session: AsyncSession, user: dict) -> dict:
    """
    委託人：自己發的所有需求 (有人接的話附上寫手資料)
    寫手：自己接下的需求
    同一個人兩種身分都有的話兩邊都會列出，用 viewer_role 區分。
    """
    ensure_member(user)
    writer_user = aliased(User)
    client_user = aliased(User)

    # 委託人那一邊
    client_rows = (
        await session.execute(
            select(AssignmentRequest, Assignment, writer_user)
            .outerjoin(Assignment, Assignment.request_id == AssignmentRequest.id)
            .outerjoin(writer_user, writer_user.id == Assignment.writer_id)
            .where(AssignmentRequest.client_id == user["id"])
            .execution_options(populate_existing=True)
        )
    ).all()

    # 寫手那一邊
    writer_rows = (
        await session.execute(
            select(AssignmentRequest, Assignment, client_user)
            .join(Assignment, Assignment.request_id == AssignmentRequest.id)
            .join(client_user, client_user.id == AssignmentRequest.client_id)
            .where(Assignment.writer_id == user["id"])
            .execution_options(populate_existing=True)
        )
    ).all()

    request_ids = [req.id for req, _, _ in client_rows] + [req.id for req, _, _ in writer_rows]
    rated_pairs = set()
    if request_ids:
        rated_pairs = {
            (rater_id, request_id)
            for rater_id, request_id in (
                await session.execute(
                    select(Rating.rater_id, Rating.assignment_request_id).where(
                        Rating.assignment_request_id.in_(request_ids)
                    )
                )
            ).all()
        }

    me = await _get_member_row(session, user["id"])
    results = []

    for req, assignment, writer in client_rows:
        item = serialize_request(req, me)
        item["viewer_role"] = "client"
        item["assignment"] = _serialize_assignment(assignment)
        item["writer"] = serialize_client(writer) if writer is not None else None
        if assignment is not None:
            item["writer_contact"] = _counterpart_contact(writer)
            item["has_rated_writer"] = (user["id"], req.id) in rated_pairs
            item["has_rated_client"] = (assignment.writer_id, req.id) in rated_pairs
        else:
            item["has_rated_writer"] = False
            item["has_rated_client"] = False
        results.append(item)

    for req, assignment, client in writer_rows:
        item = serialize_request(req, client)
        item["viewer_role"] = "writer"
        item["assignment"] = _serialize_assignment(assignment)
        item["writer"] = serialize_client(me)
        item["client_contact"] = _counterpart_contact(client)
        item["has_rated_writer"] = (client.id, req.id) in rated_pairs
        item["has_rated_client"] = (user["id"], req.id) in rated_pairs
        results.append(item)

    results.sort(key=lambda item: (item["created_at"], item["id"]), reverse=True)
    return {"role": me.role, "assignments": results}


def _serialize_assignment(assignment: Assignment | None) -> dict | None:
    if assignment is None:
        return None
    return {
        "id": assignment.id,
        "writer_id": assignment.writer_id,
        "client_id": assignment.client_id,
        "status": assignment.status,
        "created_at": assignment.created_at,
        "completed_at": assignment.completed_at,
    }


async def list_my_ratings(session: AsyncSession, user: dict) -> dict:
    ensure_member(user)
    rater = aliased(User)

    async with transaction(session):
        rating, total = await recompute_user_rating(session, user["id"])
        rows = (
            await session.execute(
                select(Rating, rater.name, AssignmentRequest.course_name, AssignmentRequest.course_code)
                .join(rater, rater.id == Rating.rater_id)
                .join(AssignmentRequest, AssignmentRequest.id == Rating.assignment_request_id)
                .where(Rating.rated_id == user["id"])
                .order_by(Rating.created_at.desc(), Rating.id.desc())
            )
        ).all()

    return {
        "average_rating": display_rating(rating),
        "total_ratings": total,
        "ratings": [
            {
                "id": r.id,
                "score": r.score,
                "comment": r.comment,
                "created_at": r.created_at,
                "rater_id": r.rater_id,
                "rater_name": rater_name,
                "assignment_request_id": r.assignment_request_id,
                "course_name": course_name,
                "course_code": course_code,
            }
            for r, rater_name, course_name, course_code in rows
        ],
    }


# =========================================================
# 5. 刪除帳號 (不可復原)
# =========================================================

async def delete_account(session: AsyncSession, user: dict, confirmation) -> None:
    """
    在同一個交易內刪除：評價 (給出與收到)、作品集、案件、需求、帳號本身。
    被我評過的人要重新計算平均分數；
    我接下的別人的需求改成 cancelled (沒有寫手了，也不會再回到 open)。
    """
    ensure_member(user)
    if confirmation != DELETE_ACCOUNT_CONFIRMATION:
        raise ValidationError("confirmDelete", "Proper confirmation required to delete account")

    user_id = user["id"]
    async with transaction(session):
        await _get_member_row(session, user_id)

        rated_users = (
            await session.execute(
                select(Rating.rated_id).where(Rating.rater_id == user_id).distinct()
            )
        ).scalars().all()

        accepted_request_ids = (
            await session.execute(
                select(Assignment.request_id).where(Assignment.writer_id == user_id)
            )
        ).scalars().all()

        await session.execute(
            delete(Rating)
            .where(or_(Rating.rater_id == user_id, Rating.rated_id == user_id))
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Portfolio).where(Portfolio.writer_id == user_id).execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Assignment)
            .where(or_(Assignment.writer_id == user_id, Assignment.client_id == user_id))
            .execution_options(synchronize_session=False)
        )
        if accepted_request_ids:
            await session.execute(
                update(AssignmentRequest)
                .where(
                    AssignmentRequest.id.in_(accepted_request_ids),
                    AssignmentRequest.client_id != user_id,
                    AssignmentRequest.status == "assigned",
                )
                .values(status="cancelled")
                .execution_options(synchronize_session=False)
            )
        # 其他人在我發的需求上的評價已經因為 rated_id / rater_id 被刪掉了
        await session.execute(
            delete(AssignmentRequest)
            .where(AssignmentRequest.client_id == user_id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(User).where(User.id == user_id).execution_options(synchronize_session=False)
        )

        for rated_id in rated_users:
            if rated_id != user_id:
                await recompute_user_rating(session, rated_id)

    logger.info("User %s deleted their account", user_id)
