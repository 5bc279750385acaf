"""
Session, metrics and audit tables.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from clinical_scribe.storage.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecord(Base):
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    transcript = Column(Text, nullable=False)
    result_json = Column(Text, nullable=False)
    has_emergency = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<SessionRecord(id={self.id!r}, has_emergency={self.has_emergency})>"


class AnalysisMetrics(Base):
    __tablename__ = "analysis_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    processing_time_ms = Column(Integer, nullable=False)
    transcript_length = Column(Integer, nullable=False)
    num_problems_found = Column(Integer, nullable=False, default=0)
    num_diagnosis_codes = Column(Integer, nullable=False, default=0)
    num_billing_items = Column(Integer, nullable=False, default=0)
    llm_model = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action={self.action!r})>"
