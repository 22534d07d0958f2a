from sqlalchemy import BigInteger, Boolean, Column, DateTime, Enum, Integer, JSON, String, Text
from sqlalchemy.sql import func
from wavepeaks.db.base import Base

class ProcessingJob(Base):
    __tablename__ = "processing_jobs"

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)
    job_id = Column(String(255), nullable=False, unique=True)
    video_id = Column(String(11), nullable=False, index=True)
    youtube_url = Column(Text, nullable=False)
    quality = Column(Enum("low", "medium", "high", name="job_quality"), nullable=False, default="medium")
    status = Column(
        Enum("converting", "completed", "failed", "cancelled", name="job_status"),
        nullable=False,
        default="converting",
    )
    sse_url = Column(Text)
    download_url = Column(Text)
    rq_job_id = Column(String(64))
    peaks_generated = Column(Boolean, default=False)
    peaks_source = Column(String(16))
    error_message = Column(Text)
    meta = Column("metadata", JSON)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
