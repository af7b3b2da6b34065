"""
Audit event emission for workflow services.

Events are written in a SAVEPOINT inside the caller's transaction, so they
commit together with the state change they describe.  A failing audit write
only rolls back its own savepoint; the triggering operation carries on.
"""

import logging

from phaseflow.models import db
from phaseflow.models.audit import write_audit

logger = logging.getLogger(__name__)


def record_event(
    *,
    action: str,
    entity_type: str,
    entity_id,
    actor_id: int | None,
    project_id: int | None = None,
    description: str = "",
    metadata: dict | None = None,
) -> None:
    try:
        with db.session.begin_nested():
            write_audit(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                project_id=project_id,
                description=description,
                metadata=metadata,
            )
    except Exception:
        logger.exception(
            "Audit event %s for %s/%s was not recorded",
            action, entity_type, entity_id,
            extra={"project_id": project_id, "event_type": action},
        )
