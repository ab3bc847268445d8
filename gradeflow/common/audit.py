from datetime import datetime
from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from gradeflow.common.permissions import UserContext
from gradeflow.common.utils import utcnow


class AuditLog(BaseModel):
    actor_user_id: str
    role: str  # teacher, student, admin
    action: str  # create_grade, add_penalty, delete_grade, etc.
    target_type: str  # grade, submission, assignment
    target_id: str
    metadata: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


async def log_audit(
    db: AsyncIOMotorDatabase,
    user: UserContext,
    action: str,
    target_type: str,
    target_id: str,
    metadata: dict = None
):
    """
    Log grade-affecting actions for auditability

    Args:
        user: Acting user
        action: Action performed (e.g., 'create_grade', 'add_bonus')
        target_type: Resource type (e.g., 'grade', 'submission')
        target_id: ID of the resource
        metadata: Additional context (optional)
    """
    audit_log = AuditLog(
        actor_user_id=user.user_id,
        role=user.role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata=metadata or {}
    )

    await db.audit_logs.insert_one(audit_log.model_dump())


async def get_audit_trail(
    db: AsyncIOMotorDatabase,
    target_type: str = None,
    target_id: str = None,
    limit: int = 100
):
    """
    Retrieve audit logs with optional filters, newest first
    """
    query = {}

    if target_type:
        query["target_type"] = target_type

    if target_id:
        query["target_id"] = target_id

    cursor = db.audit_logs.find(query).sort("timestamp", -1).limit(limit)
    logs = await cursor.to_list(length=limit)

    for log in logs:
        log.pop("_id", None)

    return logs
