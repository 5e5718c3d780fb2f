# routers/comments.py - Write-once defect comments
# Comments are write-once: there is no update endpoint.
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_route, CurrentUser
from database import get_db_session
from models import Comment, Defect
from routers.attachments import comment_file_paths, remove_stored_files

logger = logging.getLogger("buildefect.comments")

router = APIRouter(prefix="/api/comments", tags=["Comments"])


class CommentOut(BaseModel):
    id: int
    defect_id: int
    created_at: str
    created_by: int
    text: str


class CommentCreate(BaseModel):
    defect_id: Optional[int] = None
    text: str = ""


def _comment_to_out(c: Comment) -> CommentOut:
    return CommentOut(
        id=c.id,
        defect_id=c.defect_id,
        created_at=c.created_at.isoformat() if c.created_at else "",
        created_by=c.created_by_person_id,
        text=c.text,
    )


@router.post("", response_model=CommentOut, status_code=201)
async def create_comment(
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Comment on a defect"""
    if not data.defect_id or not data.text:
        raise HTTPException(status_code=400, detail="defect_id and text are required")

    if await db.get(Defect, data.defect_id) is None:
        raise HTTPException(status_code=404, detail="defect not found")

    comment = Comment(
        defect_id=data.defect_id,
        created_by_person_id=user.id,
        text=data.text,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)
    return _comment_to_out(comment)


@router.get("", response_model=List[CommentOut])
async def list_comments(
    db: AsyncSession = Depends(get_db_session),
    defect_id: Optional[int] = None,
    limit: int = Query(default=100, gt=0),
    offset: int = Query(default=0, ge=0),
):
    """List comments of one defect, newest first"""
    if defect_id is None:
        raise HTTPException(status_code=400, detail="defect_id query parameter is required")

    stmt = (
        select(Comment)
        .where(Comment.defect_id == defect_id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [_comment_to_out(c) for c in result.scalars().all()]


@router.get("/{comment_id}", response_model=CommentOut)
async def get_comment(
    comment_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a comment by id"""
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise HTTPException(status_code=404, detail="comment not found")
    return _comment_to_out(comment)


@router.delete("/{comment_id}", response_class=PlainTextResponse)
async def delete_comment(
    comment_id: int,
    user: CurrentUser = Depends(require_route("DELETE", "/api/comments/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a comment and its attachments"""
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise HTTPException(status_code=404, detail="comment not found")

    stored_files = await comment_file_paths(db, [comment_id])
    await db.delete(comment)
    await db.commit()
    remove_stored_files(stored_files)

    logger.info(f"Comment {comment_id} deleted by {user.id}")
    return f"Successfully deleted comment with id {comment_id}"
