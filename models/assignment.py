# models/assignment.py
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from db import Base
from utils import utcnow


class Assignment(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        CheckConstraint("status IN ('in_progress', 'completed')", name="ck_assignments_status"),
    )

    id = Column(Integer, primary_key=True)
    # 每個需求只能被接一次
    request_id = Column(
        Integer,
        ForeignKey("assignment_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    writer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="in_progress")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True))
