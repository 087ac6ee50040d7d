"""
Append-only integration audit log.

Rows are added to the caller's unit of work and committed with it, so a
status change and its log row land together.
"""

from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..constants import IntegrationAction, IntegrationLogLevel, IntegrationStatus, Limits
from ..db.db_log_models import IntegrationLog
from ..schemas.integration_schemas import IntegrationLogRead
from .base_service import SessionService


def _value(item: Union[str, IntegrationAction, IntegrationStatus, IntegrationLogLevel]) -> str:
    return getattr(item, "value", item)


class IntegrationLogService(SessionService):
    def __init__(self, session: Session):
        super().__init__(session)

    def write(
        self,
        user_id: str,
        platform: str,
        action: Union[IntegrationAction, str],
        status: Union[IntegrationStatus, str],
        level: Union[IntegrationLogLevel, str],
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> IntegrationLog:
        entry = IntegrationLog(
            user_id=user_id,
            platform=platform,
            action=_value(action),
            status=_value(status),
            log_level=_value(level),
            message=message,
            error_details=error_details,
        )
        self.session.add(entry)

        self.logger.info(
            f"Integration log: {message}",
            extra={
                "user_id": user_id,
                "platform": platform,
                "action": _value(action),
                "status": _value(status),
                "log_level": _value(level),
            },
        )
        return entry

    def list_logs(
        self, user_id: str, platform: Optional[str] = None, limit: int = Limits.DEFAULT_LOG_PAGE_SIZE
    ) -> List[IntegrationLogRead]:
        """Newest first, capped at ``Limits.MAX_LOG_PAGE_SIZE``."""
        limit = max(1, min(limit, Limits.MAX_LOG_PAGE_SIZE))
        query = self.session.query(IntegrationLog).filter(IntegrationLog.user_id == user_id)
        if platform:
            query = query.filter(IntegrationLog.platform == platform)
        rows = query.order_by(IntegrationLog.created_at.desc()).limit(limit).all()
        return [IntegrationLogRead.model_validate(row) for row in rows]
