"""
Audit Recorder

Single collaborator every privileged write path calls at its commit point.

record() adds the entry to the caller's transaction and flushes it, so the
entry and the mutation it documents commit (or roll back) together. A
failed audit write raises AuditWriteFailure and the action is not applied:
auditability is a correctness property here, not a best-effort side log.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantcore.config import get_settings
from tenantcore.core.exceptions import AuditWriteFailure
from tenantcore.models.audit_log import AuditLog, ActorType
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class AuditQuery:
    """Filters for the audit log. ``action`` ending in ``*`` is a prefix match."""

    action: Optional[str] = None
    action_prefix: Optional[str] = None
    actor_user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class AuditPage:
    logs: List[AuditLog]
    total: int
    limit: int
    offset: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def clamp_limit(limit: Optional[int]) -> int:
    """Bounded page size with a hard maximum to avoid unbounded scans."""
    if limit is None or limit < 1:
        return settings.AUDIT_LOG_DEFAULT_LIMIT
    return min(limit, settings.AUDIT_LOG_MAX_LIMIT)


class AuditRecorder:

    def record(
        self,
        db: Session,
        *,
        actor_user_id: Optional[str],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
        actor_type: ActorType = ActorType.PLATFORM_USER,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """
        Append an audit entry inside the current transaction.

        Raises AuditWriteFailure (after rolling back) if the write fails.
        The caller commits.
        """
        entry = AuditLog(
            created_at=datetime.utcnow(),
            actor_user_id=actor_user_id,
            actor_type=ActorType(actor_type).value,
            tenant_id=tenant_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            payload=payload or {},
            ip_address=ip_address,
        )

        try:
            self._write(db, entry)
        except SQLAlchemyError as e:
            logger.error(
                f"Audit write failed for {action}: {e}",
                extra={"user_id": actor_user_id, "tenant_id": tenant_id},
            )
            db.rollback()
            raise AuditWriteFailure() from e

        logger.debug(f"Audit {action} recorded as #{entry.id}")
        return entry

    def _write(self, db: Session, entry: AuditLog) -> None:
        db.add(entry)
        db.flush()

    def query(self, db: Session, filters: AuditQuery) -> AuditPage:
        """
        Filtered, paginated audit entries, newest first.

        Ties on created_at are broken by id so the order is deterministic.
        """
        query = db.query(AuditLog)

        action = filters.action
        prefix = filters.action_prefix
        if action and action.endswith("*"):
            prefix, action = action[:-1], None

        if action:
            query = query.filter(AuditLog.action == action)
        if prefix:
            query = query.filter(AuditLog.action.startswith(prefix, autoescape=True))
        if filters.actor_user_id:
            query = query.filter(AuditLog.actor_user_id == filters.actor_user_id)
        if filters.tenant_id:
            query = query.filter(AuditLog.tenant_id == filters.tenant_id)
        if filters.start:
            query = query.filter(AuditLog.created_at >= filters.start)
        if filters.end:
            query = query.filter(AuditLog.created_at <= filters.end)

        total = query.count()

        limit = clamp_limit(filters.limit)
        offset = max(filters.offset or 0, 0)
        logs = (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        return AuditPage(logs=logs, total=total, limit=limit, offset=offset)

    def stats(self, db: Session, top_actors: int = 10) -> Dict[str, Any]:
        """Action counts, most active actors and overall totals."""
        action_rows = (
            db.query(AuditLog.action, func.count(AuditLog.id).label("count"))
            .group_by(AuditLog.action)
            .order_by(func.count(AuditLog.id).desc(), AuditLog.action)
            .all()
        )

        actor_rows = (
            db.query(AuditLog.actor_user_id, func.count(AuditLog.id).label("count"))
            .filter(AuditLog.actor_user_id.isnot(None))
            .group_by(AuditLog.actor_user_id)
            .order_by(func.count(AuditLog.id).desc())
            .limit(top_actors)
            .all()
        )

        total, platform_actions, earliest, latest = db.query(
            func.count(AuditLog.id),
            func.coalesce(func.sum(case((AuditLog.tenant_id.is_(None), 1), else_=0)), 0),
            func.min(AuditLog.created_at),
            func.max(AuditLog.created_at),
        ).one()

        return {
            "summary": {
                "total_logs": total,
                "platform_actions": platform_actions,
                "tenant_actions": total - platform_actions,
                "earliest": earliest,
                "latest": latest,
            },
            "actions": [{"action": a, "count": c} for a, c in action_rows],
            "actors": [{"actor_user_id": u, "count": c} for u, c in actor_rows],
        }


audit_recorder = AuditRecorder()


def get_audit_recorder() -> AuditRecorder:
    """FastAPI dependency, overridable in tests."""
    return audit_recorder
