# routers/defects.py - Defect tracking with role-gated status changes
import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import require_route, CurrentUser
from database import get_db_session
from defect_workflow import check_status_change
from models import Building, Defect, DefectStatus, User, UserRole
from routers.attachments import defect_file_paths, remove_stored_files

logger = logging.getLogger("buildefect.defects")

router = APIRouter(prefix="/api/defects", tags=["Defects"])

DEADLINE_FORMAT = "%Y-%m-%d %H:%M:%S"


# --- Schemas ---

class SimpleUser(BaseModel):
    id: int
    login: str
    name: str
    lastname: str
    role: str


class SimpleBuilding(BaseModel):
    id: int
    name: str
    address: str
    stage: str


class DefectOut(BaseModel):
    id: int
    building_id: int
    building: SimpleBuilding
    created_at: str
    created_by_person_id: int
    created_by: SimpleUser
    updated_at: str
    updated_by_person_id: int
    title: str
    description: str
    priority: str
    responsible_person_id: Optional[int] = None
    responsible: Optional[SimpleUser] = None
    deadline: Optional[str] = None
    status: str


class DefectCreate(BaseModel):
    building_id: Optional[int] = None
    title: str = ""
    description: str = ""
    priority: str = ""  # low, medium, high
    responsible_person_id: Optional[int] = None
    deadline: Optional[str] = None  # "YYYY-MM-DD HH:MM:SS"
    status: Optional[DefectStatus] = None

    @field_validator("status", mode="before")
    @classmethod
    def empty_status_is_default(cls, v):
        return None if v == "" else v


class StatusUpdate(BaseModel):
    status: str = ""


# --- Helpers ---

def _ts(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _user_brief(u: User) -> SimpleUser:
    return SimpleUser(
        id=u.id,
        login=u.login,
        name=u.name or "",
        lastname=u.lastname or "",
        role=u.role.value if isinstance(u.role, UserRole) else u.role,
    )


def _defect_to_out(d: Defect) -> DefectOut:
    return DefectOut(
        id=d.id,
        building_id=d.building_id,
        building=SimpleBuilding(
            id=d.building.id,
            name=d.building.name,
            address=d.building.address or "",
            stage=d.building.stage or "",
        ),
        created_at=_ts(d.created_at) or "",
        created_by_person_id=d.created_by_person_id,
        created_by=_user_brief(d.created_by),
        updated_at=_ts(d.updated_at) or "",
        updated_by_person_id=d.updated_by_person_id,
        title=d.title,
        description=d.description or "",
        priority=d.priority or "",
        responsible_person_id=d.responsible_person_id,
        responsible=_user_brief(d.responsible) if d.responsible else None,
        deadline=_ts(d.deadline),
        status=d.status.value if isinstance(d.status, DefectStatus) else d.status,
    )


def _with_relations(stmt):
    return stmt.options(
        selectinload(Defect.building),
        selectinload(Defect.created_by),
        selectinload(Defect.responsible),
    )


async def _load_defect(defect_id: int, db: AsyncSession) -> Optional[Defect]:
    stmt = _with_relations(select(Defect).where(Defect.id == defect_id))
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


def _parse_deadline(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, DEADLINE_FORMAT)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="invalid deadline format, use '2000-01-02 00:00:00'",
        )


async def _insert_defect(
    db: AsyncSession, data: DefectCreate, deadline: Optional[datetime], actor_id: int
) -> Defect:
    """Validate references and insert in one transaction; returns the reloaded defect.

    Any failure rolls back the whole unit, so a rejected request never leaves a row.
    """
    try:
        if await db.get(Building, data.building_id) is None:
            raise HTTPException(status_code=400, detail="building not found")

        if data.responsible_person_id is not None:
            if await db.get(User, data.responsible_person_id) is None:
                raise HTTPException(status_code=400, detail="responsible person not found")

        defect = Defect(
            building_id=data.building_id,
            created_by_person_id=actor_id,
            updated_by_person_id=actor_id,
            title=data.title,
            description=data.description,
            priority=data.priority,
            responsible_person_id=data.responsible_person_id,
            deadline=deadline,
            status=data.status or DefectStatus.NEW,
        )
        db.add(defect)
        await db.flush()
        defect_id = defect.id
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.error("Defect insert failed", exc_info=True)
        raise HTTPException(status_code=500, detail="database error")

    created = await _load_defect(defect_id, db)
    if created is None:
        raise HTTPException(status_code=500, detail="failed to load created defect")
    return created


# --- Endpoints ---

@router.post("", response_model=DefectOut, response_model_exclude_none=True, status_code=201)
async def create_defect(
    data: DefectCreate,
    user: CurrentUser = Depends(require_route("POST", "/api/defects")),
    db: AsyncSession = Depends(get_db_session),
):
    """Report a defect against an existing building"""
    if not data.building_id:
        raise HTTPException(status_code=400, detail="building_id is required")
    if not data.title:
        raise HTTPException(status_code=400, detail="title is required")

    deadline = _parse_deadline(data.deadline)
    defect = await _insert_defect(db, data, deadline, user.id)

    logger.info(f"Defect {defect.id} created in building {defect.building_id} by {user.id}")
    return _defect_to_out(defect)


@router.get("", response_model=List[DefectOut], response_model_exclude_none=True)
async def list_defects(
    db: AsyncSession = Depends(get_db_session),
    status: Optional[DefectStatus] = None,
    building_id: Optional[int] = None,
    responsible_id: Optional[int] = None,
    limit: int = Query(default=100, gt=0),
    offset: int = Query(default=0, ge=0),
):
    """List defects with optional filters"""
    stmt = _with_relations(select(Defect)).order_by(Defect.id.asc()).offset(offset).limit(limit)
    if status:
        stmt = stmt.where(Defect.status == status)
    if building_id is not None:
        stmt = stmt.where(Defect.building_id == building_id)
    if responsible_id is not None:
        stmt = stmt.where(Defect.responsible_person_id == responsible_id)

    result = await db.execute(stmt)
    return [_defect_to_out(d) for d in result.scalars().all()]


@router.get("/{defect_id}", response_model=DefectOut, response_model_exclude_none=True)
async def get_defect(
    defect_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a defect by id"""
    defect = await _load_defect(defect_id, db)
    if not defect:
        raise HTTPException(status_code=404, detail="defect not found")
    return _defect_to_out(defect)


@router.patch("/{defect_id}", response_model=DefectOut, response_model_exclude_none=True)
async def update_status(
    defect_id: int,
    data: StatusUpdate,
    user: CurrentUser = Depends(require_route("PATCH", "/api/defects/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a defect's status; the caller's role decides which targets are allowed"""
    if not data.status:
        raise HTTPException(status_code=400, detail="status is required")

    new_status = check_status_change(user.role, data.status)

    defect = await db.get(Defect, defect_id)
    if not defect:
        raise HTTPException(status_code=404, detail="defect not found")

    defect.status = new_status
    defect.updated_by_person_id = user.id
    db.add(defect)
    await db.commit()

    logger.info(f"Defect {defect_id} status set to {new_status.value} by {user.id}")
    return _defect_to_out(await _load_defect(defect_id, db))


@router.delete("/{defect_id}", response_class=PlainTextResponse)
async def delete_defect(
    defect_id: int,
    user: CurrentUser = Depends(require_route("DELETE", "/api/defects/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a defect along with its comments, attachment records and stored files"""
    defect = await db.get(Defect, defect_id)
    if not defect:
        raise HTTPException(status_code=404, detail="defect not found")

    stored_files = await defect_file_paths(db, [defect_id])
    await db.delete(defect)
    await db.commit()
    remove_stored_files(stored_files)

    logger.info(f"Defect {defect_id} deleted by {user.id}")
    return f"Successfully deleted defect with id {defect_id}"
