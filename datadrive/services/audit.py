# datadrive/services/audit.py
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..logging import get_logger
from ..models import AuditLog

logger = get_logger(__name__)


def record_event(
    db: Session,
    action: str,
    message: str,
    *,
    user_id: Optional[str] = None,
    dataset_name: Optional[str] = None,
    communities: Iterable[str] = (),
    details: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
    service: str = "dataset",
) -> None:
    """
    Best-effort audit trail. Called after the business write has committed;
    a failure here is logged and never reaches the caller.
    """
    try:
        db.add(
            AuditLog(
                level=level,
                service=service,
                user_id=user_id,
                action=action,
                message=message,
                dataset_name=dataset_name,
                communities=list(communities),
                details=details,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to insert audit log %s: %s", action, exc)
