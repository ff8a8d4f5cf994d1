"""ScheduledReport model: one row per keyword per run attempt."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class ScheduledReport(Base):
    """Outcome of a single keyword's analysis attempt plus its delivery result."""

    __tablename__ = "scheduled_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword_id = Column(
        Integer,
        ForeignKey("monitored_keywords.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    keyword = Column(String, nullable=False)
    platform = Column(String, nullable=False, index=True)
    analysis_result = Column(JSON, nullable=True)  # stats, top_by_count, top_by_ratio, insights
    feishu_pushed = Column(Boolean, nullable=False, default=False)
    feishu_push_at = Column(DateTime(timezone=True), nullable=True)
    feishu_response = Column(JSON, nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    monitored_keyword = relationship("MonitoredKeyword", back_populates="reports")
