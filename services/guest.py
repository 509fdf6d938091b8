# services/guest.py
# 訪客模式：只在 session 裡存在的示範身分
from datetime import timedelta

from config import ASSIGNMENT_EXPIRATION_DAYS
from errors import SignInRequiredError
from utils import utcnow


def is_guest(user: dict | None) -> bool:
    return bool(user) and (user.get("is_guest") or user.get("role") == "guest")


def ensure_member(user: dict | None) -> dict:
    """
    所有會寫入資料的動作都要先過這關：
    沒登入或是訪客 -> 直接拒絕，絕不「假裝成功」
    """
    if user is None or is_guest(user):
        raise SignInRequiredError()
    return user


def build_guest_user(now=None) -> dict:
    now = now or utcnow()
    return {
        "id": f"guest-{int(now.timestamp() * 1000)}",
        "name": "Guest User",
        "email": "guest@example.com",
        "profile_picture": None,
        "role": "guest",
        "writer_status": "inactive",
        "created_at": now.isoformat(),
        "is_guest": True,
    }


# 固定的範例資料 (id, 委託人, 課程, 類型, 頁數, 截止天數, 費用, 建立於幾天前, 委託人評分, 評分數)
_SAMPLES = [
    (2001, 3001, "Sample Client 1", 4.2, 5,
     "Introduction to Computer Science", "CS101", "class_assignment", 5, 7, 50, 2),
    (2002, 3002, "Sample Client 2", 4.5, 12,
     "Business Ethics", "BUS205", "workshop_files", 8, 10, 100, 1),
    (2003, 3003, "Sample Client 3", 4.8, 8,
     "Advanced Database Systems", "CS305", "lab_files", 3, 5, 100, 0),
]


def sample_requests(now=None) -> list[dict]:
    """給訪客看的示範委託 (標記 is_sample，前端會顯示「範例」標籤)"""
    now = now or utcnow()
    results = []
    for (req_id, client_id, client_name, rating, total, course_name, course_code,
         assignment_type, pages, deadline_days, cost, age_days) in _SAMPLES:
        created_at = now - timedelta(days=age_days)
        results.append({
            "id": req_id,
            "unique_id": str(100000 + req_id),
            "client": {
                "id": client_id,
                "name": client_name,
                "rating": rating,
                "total_ratings": total,
                "profile_picture": None,
            },
            "course_name": course_name,
            "course_code": course_code,
            "assignment_type": assignment_type,
            "num_pages": pages,
            "deadline": now + timedelta(days=deadline_days),
            "expiration_deadline": created_at + timedelta(days=ASSIGNMENT_EXPIRATION_DAYS),
            "estimated_cost": cost,
            "status": "open",
            "created_at": created_at,
            "is_sample": True,
        })
    return results
