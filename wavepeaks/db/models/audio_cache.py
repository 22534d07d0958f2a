from sqlalchemy import BigInteger, Column, DateTime, Float, Integer, JSON, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from wavepeaks.db.base import Base

class AudioCache(Base):
    __tablename__ = "audio_cache"
    __table_args__ = (UniqueConstraint("video_id", "quality", name="audio_cache_video_quality_unique"),)

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)
    video_id = Column(String(11), nullable=False, index=True)
    quality = Column(String(10), nullable=False, default="medium")
    audio_url = Column(Text)
    peak_preview = Column(LargeBinary)   # int16 LE, see services/audio/peaks.py
    peak_count = Column(Integer)
    duration = Column(Float)
    source = Column(String(16))          # sampled | synthetic
    meta = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
