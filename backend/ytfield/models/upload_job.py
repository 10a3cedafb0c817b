"""Upload job model for tracking background uploads."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Float, Text

from ytfield.db.database import Base


class JobStatus(str, enum.Enum):
    """Job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UploadJob(Base):
    """Background upload of one file to YouTube.

    The resumable session URL is deliberately absent: it lives only for the
    duration of a single upload attempt.
    """

    __tablename__ = "upload_jobs"

    id = Column(Integer, primary_key=True, index=True)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)

    # Source
    file_path = Column(String(4096), nullable=False)
    title = Column(String(255), nullable=False)

    # Progress tracking
    progress = Column(Float, default=0.0, nullable=False)  # 0.0 to 100.0
    message = Column(String(1024), nullable=True)

    # Results/errors
    video_id = Column(String(64), nullable=True)
    result = Column(Text, nullable=True)  # JSON string for results
    error = Column(Text, nullable=True)
    error_kind = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UploadJob(id={self.id}, status={self.status})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "file_path": self.file_path,
            "title": self.title,
            "progress": self.progress,
            "message": self.message,
            "video_id": self.video_id,
            "result": self.result,
            "error": self.error,
            "error_kind": self.error_kind,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
