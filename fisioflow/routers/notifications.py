from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..deps import admin_user, get_current_user
from ..notifications import dispatch_pending, mark_notification_sent, pending_notifications

router = APIRouter(prefix="/api/notifications", tags=["notifications"], dependencies=[Depends(get_current_user)])


@router.get("/pending")
def api_pending(limit: int = 200) -> list[dict]:
    return pending_notifications(limit=limit)


@router.post("/{notification_id}/sent")
def api_mark_sent(notification_id: int) -> dict[str, Any]:
    return {"ok": True, "changed": mark_notification_sent(notification_id)}


@router.post("/dispatch", dependencies=[Depends(admin_user)])
def api_dispatch(limit: int = 50) -> dict[str, int]:
    return dispatch_pending(limit=limit)
