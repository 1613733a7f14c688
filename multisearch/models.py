from sqlalchemy import Column, DateTime, Integer, String, func

from multisearch.database import Base


class BackendUsage(Base):
    __tablename__ = "backend_usage"

    backend_id = Column(String(100), primary_key=True)
    used = Column(Integer, nullable=False, default=0)
    last_reset = Column(String(64), nullable=False)  # ISO-8601
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
