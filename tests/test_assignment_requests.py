"""
Tests for the assignment request lifecycle.

Tests cover:
- Field validation and normalization on create
- Cost rounding to the nearest 50
- Browse listing (expiry window, ordering, no contact leak, guest samples)
- Accept preconditions, contact disclosure and the concurrent race
- Delete boundaries
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SignInRequiredError,
    ValidationError,
)
from models import Assignment, AssignmentRequest
from services import assignment_requests as service
from services.guest import build_guest_user
from utils import round_to_cost_unit, utcnow


def valid_fields(**overrides) -> dict:
    fields = {
        "course_name": "  Data Structures  ",
        "course_code": "CS201",
        "assignment_type": "class_assignment",
        "num_pages": 5,
        "deadline": (utcnow() + timedelta(days=3)).isoformat(),
        "estimated_cost": 120,
    }
    fields.update(overrides)
    return fields


async def count_assignments(db, request_id: int) -> int:
    return (
        await db.execute(select(func.count(Assignment.id)).where(Assignment.request_id == request_id))
    ).scalar_one()


# =============================================================
# TEST: Cost rounding
# =============================================================

class TestCostRounding:
    """Estimated cost rounds half-up to a multiple of 50."""

    @pytest.mark.parametrize(
        "value, expected",
        [(120, 100), (125, 150), (74, 50), (75, 100), (24.9, 0), (25, 50), ("199.99", 200)],
    )
    def test_round_to_cost_unit(self, value, expected):
        assert round_to_cost_unit(value) == expected


# =============================================================
# TEST: Create
# =============================================================

class TestCreateRequest:
    """Create validates every field before anything is written."""

    @pytest.mark.asyncio
    async def test_create_normalizes_fields(self, db, make_user):
        client = await make_user(db, "Asha Client")

        req = await service.create_request(db, client, valid_fields())

        assert req.id is not None
        assert req.status == "open"
        assert req.course_name == "Data Structures"
        assert req.estimated_cost == 100
        assert len(req.unique_id) == 6 and req.unique_id.isdigit()

    @pytest.mark.asyncio
    async def test_long_strings_are_truncated(self, db, make_user):
        client = await make_user(db, "Asha Client")

        req = await service.create_request(
            db, client, valid_fields(course_name="x" * 400, course_code="C" * 80)
        )

        assert len(req.course_name) == 255
        assert len(req.course_code) == 50

    @pytest.mark.asyncio
    async def test_display_name_assignment_type_is_accepted(self, db, make_user):
        client = await make_user(db, "Asha Client")

        req = await service.create_request(db, client, valid_fields(assignment_type="Lab Files"))

        assert req.assignment_type == "lab_files"

    @pytest.mark.parametrize(
        "field, value",
        [
            ("course_name", "   "),
            ("course_code", None),
            ("assignment_type", "essay"),
            ("num_pages", 0),
            ("num_pages", "-3"),
            ("num_pages", 2.5),
            ("num_pages", "²"),
            ("num_pages", 1001),
            ("num_pages", 10**10),
            ("deadline", "not-a-date"),
            ("deadline", "2001-01-01T00:00:00"),
            ("estimated_cost", 0),
            ("estimated_cost", 20),
            ("estimated_cost", "abc"),
            ("estimated_cost", 1e40),
            ("estimated_cost", 1e12),
            ("estimated_cost", "NaN"),
            ("estimated_cost", "-Infinity"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_field_is_rejected(self, db, make_user, field, value):
        client = await make_user(db, "Asha Client")

        with pytest.raises(ValidationError) as exc_info:
            await service.create_request(db, client, valid_fields(**{field: value}))

        assert exc_info.value.field == field
        total = (await db.execute(select(func.count(AssignmentRequest.id)))).scalar_one()
        assert total == 0

    @pytest.mark.asyncio
    async def test_numeric_string_pages_accepted(self, db, make_user):
        client = await make_user(db, "Asha Client")

        req = await service.create_request(db, client, valid_fields(num_pages="7"))

        assert req.num_pages == 7

    @pytest.mark.asyncio
    async def test_upper_bounds_are_inclusive(self, db, make_user):
        from config import MAX_ESTIMATED_COST, MAX_NUM_PAGES

        client = await make_user(db, "Asha Client")

        req = await service.create_request(
            db, client, valid_fields(num_pages=MAX_NUM_PAGES, estimated_cost=MAX_ESTIMATED_COST)
        )

        assert req.num_pages == MAX_NUM_PAGES
        assert req.estimated_cost == MAX_ESTIMATED_COST

    @pytest.mark.asyncio
    async def test_guest_cannot_create(self, db):
        with pytest.raises(SignInRequiredError):
            await service.create_request(db, build_guest_user(), valid_fields())


class TestValidateDeadline:
    """Deadline parsing."""

    def test_naive_deadline_is_utc(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        data = service.validate_request_fields(valid_fields(deadline="2026-01-02T10:00:00"), now=now)

        assert data["deadline"] == datetime(2026, 1, 2, 10, tzinfo=timezone.utc)

    def test_z_suffix_is_accepted(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        data = service.validate_request_fields(valid_fields(deadline="2026-01-05T00:00:00Z"), now=now)

        assert data["deadline"].tzinfo is not None


# =============================================================
# TEST: ListOpen
# =============================================================

class TestListOpen:
    """Browse listing."""

    @pytest.mark.asyncio
    async def test_lists_only_fresh_open_requests_newest_first(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client", whatsapp="+919876543210")
        writer = await make_user(db, "Ravi Writer", writer_status="active")
        older = await make_request(db, client["id"], age=timedelta(days=3))
        newer = await make_request(db, client["id"], age=timedelta(hours=1))
        await make_request(db, client["id"], age=timedelta(days=8))
        await make_request(db, client["id"], status="assigned")

        listing = await service.list_open_requests(db, writer)

        assert [item["id"] for item in listing] == [newer.id, older.id]
        snapshot = listing[0]["client"]
        assert snapshot["name"] == "Asha Client"
        assert set(snapshot) == {"id", "name", "profile_picture", "rating", "total_ratings"}
        assert "9876543210" not in str(listing)

    @pytest.mark.asyncio
    async def test_guest_gets_sample_records(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        await make_request(db, client["id"])

        listing = await service.list_open_requests(db, build_guest_user())

        assert len(listing) == 3
        assert all(item["is_sample"] for item in listing)
        assert {item["id"] for item in listing} == {2001, 2002, 2003}

    @pytest.mark.asyncio
    async def test_anonymous_must_sign_in(self, db):
        with pytest.raises(SignInRequiredError):
            await service.list_open_requests(db, None)


# =============================================================
# TEST: Accept
# =============================================================

class TestAcceptRequest:
    """Accepting an open request."""

    @pytest.mark.asyncio
    async def test_accept_reveals_client_contact(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client", whatsapp="+91 98765 43210")
        writer = await make_user(db, "Ravi Writer", writer_status="active")
        req = await make_request(db, client["id"])

        result = await service.accept_request(db, req.id, writer)

        assert result["request_id"] == req.id
        assert result["client_id"] == client["id"]
        assert result["client_name"] == "Asha Client"
        assert result["client_whatsapp"] == "+919876543210"
        assert result["client_whatsapp_redirect"] == "https://wa.me/919876543210"

        refreshed = await db.get(AssignmentRequest, req.id, populate_existing=True)
        assert refreshed.status == "assigned"
        assert await count_assignments(db, req.id) == 1

    @pytest.mark.asyncio
    async def test_accept_without_contact_returns_nulls(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        writer = await make_user(db, "Ravi Writer", writer_status="busy")
        req = await make_request(db, client["id"])

        result = await service.accept_request(db, req.id, writer)

        assert result["client_whatsapp"] is None
        assert result["client_whatsapp_redirect"] is None

    @pytest.mark.asyncio
    async def test_inactive_writer_is_rejected(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        writer = await make_user(db, "Ravi Writer", writer_status="inactive")
        req = await make_request(db, client["id"])
        request_id = req.id

        with pytest.raises(ValidationError) as exc_info:
            await service.accept_request(db, request_id, writer)

        assert exc_info.value.field == "writer_status"
        assert await count_assignments(db, request_id) == 0

    @pytest.mark.asyncio
    async def test_inactive_writer_checked_before_missing_request(self, db, make_user):
        writer = await make_user(db, "Ravi Writer", writer_status="inactive")

        with pytest.raises(ValidationError):
            await service.accept_request(db, 9999, writer)

    @pytest.mark.asyncio
    async def test_missing_request_is_not_available(self, db, make_user):
        writer = await make_user(db, "Ravi Writer", writer_status="active")

        with pytest.raises(ConflictError) as exc_info:
            await service.accept_request(db, 9999, writer)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_second_accept_conflicts(self, db, session_factory, make_user, make_request):
        client = await make_user(db, "Asha Client")
        first = await make_user(db, "Ravi Writer", writer_status="active")
        second = await make_user(db, "Meera Writer", writer_status="active")
        req = await make_request(db, client["id"])

        await service.accept_request(db, req.id, first)
        async with session_factory() as other:
            with pytest.raises(ConflictError):
                await service.accept_request(other, req.id, second)

        assert await count_assignments(db, req.id) == 1

    @pytest.mark.asyncio
    async def test_cannot_accept_own_request(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client", writer_status="active")
        req = await make_request(db, client["id"])

        with pytest.raises(AuthorizationError):
            await service.accept_request(db, req.id, client)

    @pytest.mark.asyncio
    async def test_guest_cannot_accept(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        req = await make_request(db, client["id"])

        with pytest.raises(SignInRequiredError):
            await service.accept_request(db, req.id, build_guest_user())

    @pytest.mark.asyncio
    async def test_concurrent_accepts_exactly_one_wins(self, db, session_factory, make_user, make_request):
        client = await make_user(db, "Asha Client")
        writer_a = await make_user(db, "Ravi Writer", writer_status="active")
        writer_b = await make_user(db, "Meera Writer", writer_status="active")
        req = await make_request(db, client["id"])

        async def attempt(writer):
            async with session_factory() as session:
                return await service.accept_request(session, req.id, writer)

        results = await asyncio.gather(attempt(writer_a), attempt(writer_b), return_exceptions=True)

        successes = [r for r in results if isinstance(r, dict)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ConflictError)
        assert await count_assignments(db, req.id) == 1


# =============================================================
# TEST: Delete
# =============================================================

class TestDeleteRequest:
    """Only the owner may delete, and only while open."""

    @pytest.mark.asyncio
    async def test_owner_deletes_open_request(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        req = await make_request(db, client["id"])

        await service.delete_request(db, req.id, client)

        remaining = (await db.execute(select(func.count(AssignmentRequest.id)))).scalar_one()
        assert remaining == 0

    @pytest.mark.asyncio
    async def test_missing_request(self, db, make_user):
        client = await make_user(db, "Asha Client")

        with pytest.raises(NotFoundError):
            await service.delete_request(db, 4242, client)

    @pytest.mark.asyncio
    async def test_not_owner(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        stranger = await make_user(db, "Kiran Stranger")
        req = await make_request(db, client["id"])

        with pytest.raises(AuthorizationError):
            await service.delete_request(db, req.id, stranger)

    @pytest.mark.asyncio
    async def test_assigned_request_cannot_be_deleted(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        writer = await make_user(db, "Ravi Writer", writer_status="active")
        req = await make_request(db, client["id"])
        await service.accept_request(db, req.id, writer)
        request_id = req.id

        with pytest.raises(ConflictError) as exc_info:
            await service.delete_request(db, request_id, client)

        assert exc_info.value.status_code == 403
        assert await count_assignments(db, request_id) == 1
        # 委託需求本身也還在，狀態不變
        remaining = await db.get(AssignmentRequest, request_id, populate_existing=True)
        assert remaining.status == "assigned"


# =============================================================
# TEST: End-to-end scenarios
# =============================================================

class TestScenarios:
    """Whole flows across the lifecycle manager and the aggregator."""

    @pytest.mark.asyncio
    async def test_create_accept_rate_flow(self, db, session_factory, make_user):
        from services.ratings import submit_rating

        client = await make_user(db, "Asha Client", whatsapp="+919876543210")
        writer_w = await make_user(db, "Ravi Writer", writer_status="active")
        writer_x = await make_user(db, "Meera Writer", writer_status="active")

        req = await service.create_request(
            db,
            client,
            valid_fields(
                course_code="CS101",
                num_pages=5,
                estimated_cost=100,
                deadline=(utcnow() + timedelta(days=7)).isoformat(),
            ),
        )
        listing = await service.list_open_requests(db, writer_w)
        assert [item["id"] for item in listing] == [req.id]
        assert listing[0]["estimated_cost"] % 50 == 0
        assert listing[0]["num_pages"] == 5

        accepted = await service.accept_request(db, req.id, writer_w)
        assert accepted["assignment_id"]
        assert accepted["client_whatsapp"] == "+919876543210"
        assert await service.list_open_requests(db, writer_w) == []

        async with session_factory() as other:
            with pytest.raises(ConflictError):
                await service.accept_request(other, req.id, writer_x)

        result = await submit_rating(db, writer_w, client["id"], req.id, 5)
        assert result["new_rating"] == 5.0
        assert result["total_ratings"] == 1

        assignment = (
            await db.execute(
                select(Assignment).where(Assignment.request_id == req.id).execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert assignment.status == "completed"

    @pytest.mark.asyncio
    async def test_status_matches_assignment_rows(self, db, make_user, make_request):
        client = await make_user(db, "Asha Client")
        writer = await make_user(db, "Ravi Writer", writer_status="active")
        requests = [await make_request(db, client["id"]) for _ in range(4)]
        for req in requests[:2]:
            await service.accept_request(db, req.id, writer)

        rows = (
            await db.execute(
                select(AssignmentRequest.id, AssignmentRequest.status).execution_options(populate_existing=True)
            )
        ).all()
        for request_id, status in rows:
            expected = 1 if status == "assigned" else 0
            assert await count_assignments(db, request_id) == expected
        assert sorted(status for _, status in rows) == ["assigned", "assigned", "open", "open"]
