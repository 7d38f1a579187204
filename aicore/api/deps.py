from typing import Optional

from fastapi import Header

from aicore.services.actor import Actor

ADMIN_ROLE = "admin"


def get_actor(
    x_user_id: int = Header(...),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Caller identity as forwarded by the gateway in front of this service."""
    return Actor(user_id=x_user_id, is_admin=(x_user_role or "").strip().lower() == ADMIN_ROLE)


def page_payload(page, schema) -> dict:
    return {
        "items": [schema.model_validate(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "per_page": page.per_page,
        "pages": page.pages,
    }
