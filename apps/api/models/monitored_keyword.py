"""MonitoredKeyword model for recurring topic analysis."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class MonitoredKeyword(Base):
    """Keyword/platform pair re-analyzed on every scheduled run."""

    __tablename__ = "monitored_keywords"
    __table_args__ = (UniqueConstraint("keyword", "platform", name="uq_monitored_keywords_keyword_platform"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String, nullable=False)
    platform = Column(String, nullable=False, index=True)  # wechat, xiaohongshu
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    reports = relationship("ScheduledReport", back_populates="monitored_keyword", passive_deletes=True)
