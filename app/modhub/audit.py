from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.modhub.models import AuditEvent, User


def _request_origin(request_id: str | None) -> tuple[str | None, str | None]:
    if not has_request_context():
        return request_id, None
    return request_id or getattr(g, "request_id", None), request.remote_addr


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Add an audit row to `s`. The caller owns the commit, so the event lands
    (or is rolled back) together with the change it describes.
    """
    rid, ip = _request_origin(request_id)
    event = AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=getattr(actor, "id", None),
        actor_username=getattr(actor, "username", None),
        metadata_json=metadata or None,
        request_id=rid,
        client_ip=ip,
    )
    s.add(event)
    return event
