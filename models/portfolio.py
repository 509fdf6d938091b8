# models/portfolio.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from db import Base
from utils import utcnow


class Portfolio(Base):
    __tablename__ = "writer_portfolios"

    id = Column(Integer, primary_key=True)
    writer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    sample_work_image = Column(String(1024))  # 作品圖片網址或上傳後的路徑
    description = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    writer = relationship("User", back_populates="portfolio")
