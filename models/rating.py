# models/rating.py
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint

from db import Base
from utils import utcnow


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        # 同一個人對同一個需求只能有一筆評價 (重送時改用 UPDATE)
        UniqueConstraint("rater_id", "assignment_request_id", name="uq_ratings_rater_request"),
        CheckConstraint("score BETWEEN 1 AND 5", name="ck_ratings_score"),
        CheckConstraint("rater_id <> rated_id", name="ck_ratings_not_self"),
    )

    id = Column(Integer, primary_key=True)
    rater_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rated_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_request_id = Column(
        Integer, ForeignKey("assignment_requests.id", ondelete="CASCADE"), nullable=False
    )

    score = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
