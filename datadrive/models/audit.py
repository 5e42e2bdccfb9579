from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from datetime import datetime
from ..db import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(20), nullable=False, default="INFO")
    service = Column(String(100), nullable=False)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    dataset_name = Column(String(512), nullable=True)
    communities = Column(JSON, nullable=False, default=list)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
