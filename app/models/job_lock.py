from datetime import datetime, timezone

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class JobLock(Base):
    """
    Advisory lock for scheduled jobs.

    The primary key is the lock key (e.g. "settlement:2026-10-19"), so a
    second INSERT for the same key fails while the first run holds it.
    """
    __tablename__ = "job_locks"

    lock_key: Mapped[str] = mapped_column(String(200), primary_key=True)
    owner: Mapped[str] = mapped_column(String(200), nullable=False)

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<JobLock({self.lock_key} held by {self.owner})>"
