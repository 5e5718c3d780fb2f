# routers/buildings.py - Building CRUD
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route, CurrentUser
from database import get_db_session
from models import Building
from routers.attachments import building_file_paths, remove_stored_files

logger = logging.getLogger("buildefect.buildings")

router = APIRouter(prefix="/api/buildings", tags=["Buildings"])


# --- Schemas ---

class BuildingOut(BaseModel):
    id: int
    name: str
    address: str
    stage: str


class BuildingCreate(BaseModel):
    name: str = ""
    address: str = ""
    stage: str = ""


class BuildingUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    stage: Optional[str] = None


# --- Helpers ---

def _building_to_out(b: Building) -> BuildingOut:
    return BuildingOut(
        id=b.id,
        name=b.name,
        address=b.address or "",
        stage=b.stage or "",
    )


async def _get_building(building_id: int, db: AsyncSession) -> Building:
    building = await db.get(Building, building_id)
    if not building:
        raise HTTPException(status_code=404, detail="building not found")
    return building


# --- Endpoints ---

@router.post("", response_model=BuildingOut, status_code=201)
async def create_building(
    data: BuildingCreate,
    user: CurrentUser = Depends(require_route("POST", "/api/buildings")),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a building"""
    if not data.name:
        raise HTTPException(status_code=400, detail="name is required")

    building = Building(name=data.name, address=data.address, stage=data.stage)
    db.add(building)
    await db.commit()
    await db.refresh(building)
    return _building_to_out(building)


@router.get("", response_model=List[BuildingOut])
async def list_buildings(
    db: AsyncSession = Depends(get_db_session),
    stage: Optional[str] = None,
    limit: int = Query(default=100, gt=0),
    offset: int = Query(default=0, ge=0),
):
    """List buildings"""
    stmt = select(Building).order_by(Building.id.asc()).offset(offset).limit(limit)
    if stage:
        stmt = stmt.where(Building.stage == stage)

    result = await db.execute(stmt)
    return [_building_to_out(b) for b in result.scalars().all()]


@router.get("/{building_id}", response_model=BuildingOut)
async def get_building(
    building_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a building by id"""
    return _building_to_out(await _get_building(building_id, db))


@router.patch("/{building_id}", response_model=BuildingOut)
async def update_building(
    building_id: int,
    update: BuildingUpdate,
    user: CurrentUser = Depends(require_route("PATCH", "/api/buildings/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Partially update a building; empty fields are ignored"""
    building = await _get_building(building_id, db)

    if update.name:
        building.name = update.name
    if update.address:
        building.address = update.address
    if update.stage:
        building.stage = update.stage

    db.add(building)
    await db.commit()
    await db.refresh(building)
    return _building_to_out(building)


@router.delete("/{building_id}", response_class=PlainTextResponse)
async def delete_building(
    building_id: int,
    user: CurrentUser = Depends(require_route("DELETE", "/api/buildings/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a building together with its defects and their stored files"""
    building = await _get_building(building_id, db)
    stored_files = await building_file_paths(db, building_id)

    await db.delete(building)
    await db.commit()
    remove_stored_files(stored_files)

    logger.info(f"Building {building_id} deleted by {user.id}")
    return f"Successfully deleted building with id {building_id}"
