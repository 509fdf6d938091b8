# models/user.py
from sqlalchemy import CheckConstraint, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import relationship

from db import Base
from utils import utcnow


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('client', 'writer')", name="ck_users_role"),
        CheckConstraint(
            "writer_status IN ('active', 'busy', 'inactive')", name="ck_users_writer_status"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    google_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    profile_picture = Column(String(1024))
    university_stream = Column(String(255))

    # "client" 或 "writer" (訪客 guest 只存在 session 裡，不寫進資料庫)
    role = Column(String(20), nullable=False, default="client")
    writer_status = Column(String(20), nullable=False, default="inactive")

    # 快取欄位：只能由 services/ratings.py 從 ratings 表重新計算
    rating = Column(Float, nullable=False, default=0.0)
    total_ratings = Column(Integer, nullable=False, default=0)

    # 加密後的 WhatsApp 號碼 (Fernet token)
    whatsapp_number = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    portfolio = relationship("Portfolio", back_populates="writer", uselist=False)
