from __future__ import annotations

import logging

from backoffice.api.handlers.deps import ApiDeps
from backoffice.domain.error_taxonomy import describe_failure

logger = logging.getLogger("audit")


async def record_admin_event(
    deps: ApiDeps,
    *,
    action: str,
    target_type: str,
    target_id: str,
    success: bool,
    actor_user_id: str | None = None,
) -> None:
    # Admin responses must not depend on audit availability.
    try:
        await deps.audit.record(
            action=action,
            target_type=target_type,
            target_id=target_id,
            success=success,
            actor_user_id=actor_user_id,
        )
    except Exception as exc:
        logger.error(
            "audit record failed",
            extra={"action": action, "target_id": target_id, "error": describe_failure(exc)},
        )
