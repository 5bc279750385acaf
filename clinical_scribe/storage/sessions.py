"""
Session storage for completed analyses.

The pipeline only ever writes here once per completed run, through ``save``;
it never reads back mid-run. Results are stored as the PipelineResult JSON
and rebuilt with ``model_validate_json`` on the way out.

Design Decisions:
- The store owns its sessionmaker; each call opens and closes its own session
- Audit events are plain rows; details are JSON text
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from clinical_scribe.pipeline.models import PipelineResult
from clinical_scribe.storage.database import create_db_engine, create_session_factory, init_db
from clinical_scribe.storage.models import AnalysisMetrics, AuditLog, SessionRecord

logger = structlog.get_logger(__name__)


class AuditEvent(str, Enum):
    ANALYSIS_REQUESTED = "ANALYSIS_REQUESTED"
    ANALYSIS_ERROR = "ANALYSIS_ERROR"


class SessionStore(Protocol):
    """Persistence collaborator used by the analysis runner."""

    def save(self, session_id: str, transcript: str, result: PipelineResult, has_emergency: bool) -> None: ...

    def get_last(self) -> Optional[PipelineResult]: ...

    def get_by_id(self, session_id: str) -> Optional[PipelineResult]: ...

    def save_metrics(
        self, session_id: str, processing_time_ms: int, transcript_length: int, result: PipelineResult
    ) -> None: ...


class AuditSink(Protocol):
    """Receives discrete audit events."""

    def log_audit(self, action: AuditEvent, details: dict[str, Any], session_id: Optional[str] = None) -> None: ...


class SqlSessionStore:
    """SQLAlchemy-backed SessionStore and AuditSink.

    Args:
        engine: Engine to use. Built from settings when omitted.
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or create_db_engine()
        init_db(self.engine)
        self._session_factory = create_session_factory(self.engine)

    # =========================================================================
    # Sessions
    # =========================================================================

    def save(self, session_id: str, transcript: str, result: PipelineResult, has_emergency: bool) -> None:
        record = SessionRecord(
            id=session_id,
            timestamp=result.created_at or datetime.now(timezone.utc),
            transcript=transcript,
            result_json=result.model_dump_json(),
            has_emergency=has_emergency,
        )
        with self._session_factory() as db:
            db.add(record)
            db.commit()
        logger.info("session_saved", session_id=session_id, has_emergency=has_emergency)

    def get_last(self) -> Optional[PipelineResult]:
        with self._session_factory() as db:
            record = db.scalars(
                select(SessionRecord).order_by(SessionRecord.timestamp.desc()).limit(1)
            ).first()
            return PipelineResult.model_validate_json(record.result_json) if record else None

    def get_by_id(self, session_id: str) -> Optional[PipelineResult]:
        with self._session_factory() as db:
            record = db.get(SessionRecord, session_id)
            return PipelineResult.model_validate_json(record.result_json) if record else None

    def list_sessions(self, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        """Newest first. Summaries only; use ``get_by_id`` for the full result."""
        with self._session_factory() as db:
            records = db.scalars(
                select(SessionRecord)
                .order_by(SessionRecord.timestamp.desc())
                .limit(limit)
                .offset(offset)
            ).all()
            return [
                {
                    "id": r.id,
                    "timestamp": r.timestamp,
                    "transcript_preview": r.transcript[:80],
                    "has_emergency": r.has_emergency,
                }
                for r in records
            ]

    # =========================================================================
    # Metrics & audit
    # =========================================================================

    def save_metrics(
        self,
        session_id: str,
        processing_time_ms: int,
        transcript_length: int,
        result: PipelineResult,
    ) -> None:
        metrics = AnalysisMetrics(
            session_id=session_id,
            processing_time_ms=processing_time_ms,
            transcript_length=transcript_length,
            num_problems_found=len(result.problems),
            num_diagnosis_codes=len(result.diagnosis_codes),
            num_billing_items=len(result.billing.additional_items),
            llm_model=result.model_used,
        )
        with self._session_factory() as db:
            db.add(metrics)
            db.commit()

    def log_audit(self, action: AuditEvent, details: dict[str, Any], session_id: Optional[str] = None) -> None:
        action_name = AuditEvent(action).value
        entry = AuditLog(
            session_id=session_id,
            action=action_name,
            details=json.dumps(details, default=str),
        )
        with self._session_factory() as db:
            db.add(entry)
            db.commit()
        logger.info("audit_event", action=action_name, session_id=session_id)

    def audit_events(self, action: Optional[AuditEvent] = None) -> list[dict[str, Any]]:
        """Audit rows in insertion order, optionally filtered by action."""
        query = select(AuditLog).order_by(AuditLog.id)
        if action is not None:
            query = query.where(AuditLog.action == AuditEvent(action).value)
        with self._session_factory() as db:
            return [
                {
                    "session_id": row.session_id,
                    "action": row.action,
                    "details": json.loads(row.details) if row.details else {},
                    "timestamp": row.timestamp,
                }
                for row in db.scalars(query).all()
            ]

    def get_stats(self) -> dict[str, Any]:
        with self._session_factory() as db:
            total = db.scalar(select(func.count()).select_from(SessionRecord)) or 0
            emergencies = db.scalar(
                select(func.count()).select_from(SessionRecord).where(SessionRecord.has_emergency.is_(True))
            ) or 0
            averages = db.execute(
                select(
                    func.avg(AnalysisMetrics.processing_time_ms),
                    func.avg(AnalysisMetrics.transcript_length),
                    func.avg(AnalysisMetrics.num_problems_found),
                    func.avg(AnalysisMetrics.num_diagnosis_codes),
                    func.avg(AnalysisMetrics.num_billing_items),
                )
            ).one()

        keys = (
            "avg_processing_time_ms",
            "avg_transcript_length",
            "avg_problems",
            "avg_diagnosis_codes",
            "avg_billing_items",
        )
        return {
            "total_sessions": total,
            "emergency_sessions": emergencies,
            "average_metrics": {
                key: round(float(value), 2) if value is not None else None
                for key, value in zip(keys, averages)
            },
        }
