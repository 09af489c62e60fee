"""Per-group notification preference routes."""
from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from callboard.database import get_db
from callboard.services import notification_service

router = APIRouter()


@router.get("/{group_id}/members/{user_id}/notifications")
def get_preferences(group_id: str, user_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    return notification_service.get_notification_preferences(db, group_id, user_id)


@router.put("/{group_id}/members/{user_id}/notifications")
def update_preferences(
    group_id: str, user_id: str, payload: dict[str, Any], db: Session = Depends(get_db),
) -> dict[str, Any]:
    return notification_service.update_notification_preferences(db, group_id, user_id, payload)
