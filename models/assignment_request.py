# models/assignment_request.py
from datetime import timedelta

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from config import ASSIGNMENT_EXPIRATION_DAYS
from db import Base
from utils import utcnow


class AssignmentRequest(Base):
    __tablename__ = "assignment_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'assigned', 'completed', 'cancelled')",
            name="ck_assignment_requests_status",
        ),
        CheckConstraint("num_pages > 0", name="ck_assignment_requests_num_pages"),
        CheckConstraint("estimated_cost >= 0", name="ck_assignment_requests_cost"),
    )

    id = Column(Integer, primary_key=True)
    # 6 位數的公開編號，方便雙方溝通時引用
    unique_id = Column(String(6), index=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    course_name = Column(String(255), nullable=False)
    course_code = Column(String(50), nullable=False)
    assignment_type = Column(String(100), nullable=False)
    num_pages = Column(Integer, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)
    estimated_cost = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default="open", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    client = relationship("User", foreign_keys=[client_id])

    @property
    def expiration_deadline(self):
        if self.created_at is None:
            return None
        return self.created_at + timedelta(days=ASSIGNMENT_EXPIRATION_DAYS)
