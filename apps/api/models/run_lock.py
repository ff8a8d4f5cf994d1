"""RunLockRecord model: a lease row shared by every process that can start a run."""

from sqlalchemy import Column, DateTime, String

from database import Base


class RunLockRecord(Base):
    """Named lease. `holder` is null when free; a lease past `expires_at` is stale."""

    __tablename__ = "run_locks"

    name = Column(String, primary_key=True)
    holder = Column(String, nullable=True)
    acquired_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
