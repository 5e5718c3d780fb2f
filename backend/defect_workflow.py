# defect_workflow.py - Who may move a defect to which status
"""
Status changes are gated by role, not by the defect's current status:
a manager may close a defect straight from "new". Observers cannot change
status at all, and nobody sets "new" through a status change.
"""
from typing import Dict, FrozenSet, Optional

from fastapi import HTTPException

from models import DefectStatus, UserRole

STATUS_PERMISSIONS: Dict[UserRole, FrozenSet[DefectStatus]] = {
    UserRole.ENGINEER: frozenset({DefectStatus.IN_PROGRESS, DefectStatus.REVIEW}),
    UserRole.MANAGER: frozenset({DefectStatus.IN_PROGRESS, DefectStatus.REVIEW, DefectStatus.CLOSED}),
    UserRole.OBSERVER: frozenset(),
}


def allowed_statuses(role: Optional[UserRole]) -> FrozenSet[DefectStatus]:
    if role is None:
        return frozenset()
    return STATUS_PERMISSIONS.get(role, frozenset())


def can_set_status(role: Optional[UserRole], target: str) -> bool:
    try:
        status = DefectStatus(target)
    except ValueError:
        return False
    return status in allowed_statuses(role)


def check_status_change(role: Optional[UserRole], target: str) -> DefectStatus:
    """Return the target as a DefectStatus, or raise 403 if the role may not set it"""
    if not allowed_statuses(role):
        raise HTTPException(status_code=403, detail="insufficient permissions")
    if not can_set_status(role, target):
        raise HTTPException(status_code=403, detail="role cannot set this status")
    return DefectStatus(target)
