import json
import logging
from typing import Any, Optional

from fastapi import Request

from ptsa import database
from ptsa.constants.audit import AuditAction
from ptsa.middleware.rate_limit import get_client_ip
from ptsa.models.audit_log import AuditLog
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ptsa.audit")


def extract_client_info(request: Request) -> tuple[str, Optional[str]]:
    """Return ``(ip_address, user_agent)`` for audit rows."""
    return get_client_ip(request), request.headers.get("user-agent")


def _serializable(metadata: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not metadata:
        return {}
    # Round-trip drops anything json cannot represent (datetimes become strings)
    return json.loads(json.dumps(metadata, default=str))


async def log_audit_event(
    event_type: AuditAction | str,
    user_id: Optional[str] = None,
    target_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """
    Record an audit event as a JSON log line and an ``audit_logs`` row.

    Uses a separate session so the caller's transaction is never touched.
    Never raises: auditing must not break the request that triggered it.
    """
    event_name = event_type.value if isinstance(event_type, AuditAction) else event_type
    try:
        details = _serializable(metadata)
        audit_logger.info(
            event_name,
            extra={
                "audit": True,
                "event_type": event_name,
                "user_id": user_id,
                "target_id": target_id,
                "resource_type": resource_type,
                "metadata": details,
            },
        )

        async with database.AsyncSessionLocal() as session:
            session.add(
                AuditLog(
                    event_type=event_name,
                    user_id=user_id,
                    target_id=target_id,
                    resource_type=resource_type,
                    meta=details,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    created_at=utcnow(),
                )
            )
            await session.commit()

    except Exception as e:
        logger.error(f"Failed to log audit event {event_name}: {str(e)}")


async def log_request_audit_event(
    request: Request,
    event_type: AuditAction | str,
    user_id: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Convenience wrapper that fills in client IP and user agent from the request."""
    ip_address, user_agent = extract_client_info(request)
    await log_audit_event(event_type, user_id=user_id, ip_address=ip_address, user_agent=user_agent, **kwargs)
