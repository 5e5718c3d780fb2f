# routers/attachments.py - Files attached to defects and comments
import os
import time
import shutil
import logging
from typing import Iterable, Optional, List

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File as FastAPIFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route, CurrentUser
from database import get_db_session
from models import Comment, CommentAttachment, Defect, DefectAttachment

logger = logging.getLogger("buildefect.attachments")

router = APIRouter(prefix="/api", tags=["Attachments"])

# Storage directory (configurable via env); served read-only at /uploads
UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "uploads")
PUBLIC_PREFIX = "/uploads"

DEFECT_DIR = "defect_attachments"
COMMENT_DIR = "comment_attachments"


# --- Schemas ---

class DefectAttachmentOut(BaseModel):
    id: int
    defect_id: int
    url: str


class CommentAttachmentOut(BaseModel):
    id: int
    comment_id: int
    url: str


# --- Helpers ---

def _public_url(rel_path: str) -> str:
    return f"{PUBLIC_PREFIX}/{rel_path}"


def _absolute(rel_path: str) -> str:
    return os.path.join(UPLOAD_ROOT, *rel_path.split("/"))


def _defect_attachment_to_out(a: DefectAttachment) -> DefectAttachmentOut:
    return DefectAttachmentOut(id=a.id, defect_id=a.defect_id, url=_public_url(a.url))


def _comment_attachment_to_out(a: CommentAttachment) -> CommentAttachmentOut:
    return CommentAttachmentOut(id=a.id, comment_id=a.comment_id, url=_public_url(a.url))


def _write_file(source, abs_path: str) -> None:
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)
    with open(abs_path, "wb") as out:
        shutil.copyfileobj(source, out)


async def _store_upload(upload: Optional[UploadFile], subdir: str) -> str:
    """Write the upload under UPLOAD_ROOT/subdir and return its relative path.

    The copy runs in the threadpool so large files do not stall the event loop.
    """
    filename = os.path.basename(upload.filename or "") if upload else ""
    if not filename:
        raise HTTPException(status_code=400, detail="file required")

    rel_path = f"{subdir}/{time.time_ns()}_{filename}"
    abs_path = _absolute(rel_path)
    try:
        await run_in_threadpool(_write_file, upload.file, abs_path)
    except OSError as e:
        logger.error(f"Failed to save upload {abs_path}: {e}")
        raise HTTPException(status_code=500, detail="failed to save file")
    return rel_path


def _discard_file(rel_path: str) -> None:
    try:
        os.remove(_absolute(rel_path))
    except OSError as e:
        logger.error(f"Failed to discard orphaned upload {rel_path}: {e}")


# --- Cascade cleanup (used by the building, defect and comment routers) ---

async def comment_file_paths(db: AsyncSession, comment_ids: Iterable[int]) -> List[str]:
    ids = list(comment_ids)
    if not ids:
        return []
    result = await db.execute(
        select(CommentAttachment.url).where(CommentAttachment.comment_id.in_(ids))
    )
    return list(result.scalars().all())


async def defect_file_paths(db: AsyncSession, defect_ids: Iterable[int]) -> List[str]:
    """Stored paths of every file owned by the defects or by their comments"""
    ids = list(defect_ids)
    if not ids:
        return []
    result = await db.execute(
        select(DefectAttachment.url).where(DefectAttachment.defect_id.in_(ids))
    )
    comment_ids = await db.execute(select(Comment.id).where(Comment.defect_id.in_(ids)))
    return list(result.scalars().all()) + await comment_file_paths(db, comment_ids.scalars().all())


async def building_file_paths(db: AsyncSession, building_id: int) -> List[str]:
    defect_ids = await db.execute(select(Defect.id).where(Defect.building_id == building_id))
    return await defect_file_paths(db, defect_ids.scalars().all())


def remove_stored_files(rel_paths: Iterable[str]) -> None:
    """Remove files whose rows a cascade delete has already committed away.

    Failures are logged only; there is no row left to keep.
    """
    for rel_path in rel_paths:
        try:
            os.remove(_absolute(rel_path))
        except FileNotFoundError:
            logger.warning(f"Attachment file already missing: {rel_path}")
        except OSError as e:
            logger.error(f"Failed to remove file {rel_path}: {e}")


async def _save_record(record, db: AsyncSession):
    """Insert an attachment row; the stored file is removed again if the insert fails"""
    rel_path = record.url
    db.add(record)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        _discard_file(rel_path)
        logger.error("Attachment insert failed", exc_info=True)
        raise HTTPException(status_code=500, detail="failed to save attachment")
    await db.refresh(record)
    return record


async def _delete_record(record, db: AsyncSession) -> None:
    """Delete the row and its file together.

    The row delete is flushed but not committed until the file is gone, so a
    failed removal leaves both in place. An already-missing file counts as removed.
    """
    rel_path = record.url
    await db.delete(record)
    await db.flush()
    try:
        os.remove(_absolute(rel_path))
    except FileNotFoundError:
        logger.warning(f"Attachment file already missing: {rel_path}")
    except OSError as e:
        logger.error(f"Failed to remove file {rel_path}: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="failed to remove file")
    await db.commit()


# ============================================================
# DEFECT ATTACHMENTS
# ============================================================

@router.post("/defects/{defect_id}/attachments", response_model=DefectAttachmentOut, status_code=201)
async def upload_defect_attachment(
    defect_id: int,
    file: Optional[UploadFile] = FastAPIFile(None),
    user: CurrentUser = Depends(require_route("POST", "/api/defects/{id}/attachments")),
    db: AsyncSession = Depends(get_db_session),
):
    """Upload a file for a defect (multipart field "file")"""
    if await db.get(Defect, defect_id) is None:
        raise HTTPException(status_code=404, detail="defect not found")

    rel_path = await _store_upload(file, DEFECT_DIR)
    attachment = await _save_record(DefectAttachment(defect_id=defect_id, url=rel_path), db)

    logger.info(f"Attachment {attachment.id} added to defect {defect_id} by {user.id}")
    return _defect_attachment_to_out(attachment)


@router.get("/defects/{defect_id}/attachments", response_model=List[DefectAttachmentOut])
async def list_defect_attachments(
    defect_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """List a defect's attachments"""
    if await db.get(Defect, defect_id) is None:
        raise HTTPException(status_code=404, detail="defect not found")

    stmt = (
        select(DefectAttachment)
        .where(DefectAttachment.defect_id == defect_id)
        .order_by(DefectAttachment.id.asc())
    )
    result = await db.execute(stmt)
    return [_defect_attachment_to_out(a) for a in result.scalars().all()]


@router.get("/attachments/{attachment_id}", response_model=DefectAttachmentOut)
async def get_defect_attachment(
    attachment_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a defect attachment by id"""
    attachment = await db.get(DefectAttachment, attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="attachment not found")
    return _defect_attachment_to_out(attachment)


@router.delete("/attachments/{attachment_id}")
async def delete_defect_attachment(
    attachment_id: int,
    user: CurrentUser = Depends(require_route("DELETE", "/api/attachments/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a defect attachment and its stored file"""
    attachment = await db.get(DefectAttachment, attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="attachment not found")

    await _delete_record(attachment, db)
    return {"message": "attachment deleted successfully"}


# ============================================================
# COMMENT ATTACHMENTS
# ============================================================

@router.post("/comments/{comment_id}/attachments", response_model=CommentAttachmentOut, status_code=201)
async def upload_comment_attachment(
    comment_id: int,
    file: Optional[UploadFile] = FastAPIFile(None),
    user: CurrentUser = Depends(require_route("POST", "/api/comments/{id}/attachments")),
    db: AsyncSession = Depends(get_db_session),
):
    """Upload a file for a comment (multipart field "file")"""
    if await db.get(Comment, comment_id) is None:
        raise HTTPException(status_code=404, detail="comment not found")

    rel_path = await _store_upload(file, COMMENT_DIR)
    attachment = await _save_record(CommentAttachment(comment_id=comment_id, url=rel_path), db)
    return _comment_attachment_to_out(attachment)


@router.get("/comments/{comment_id}/attachments", response_model=List[CommentAttachmentOut])
async def list_comment_attachments(
    comment_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """List a comment's attachments"""
    if await db.get(Comment, comment_id) is None:
        raise HTTPException(status_code=404, detail="comment not found")

    stmt = (
        select(CommentAttachment)
        .where(CommentAttachment.comment_id == comment_id)
        .order_by(CommentAttachment.id.asc())
    )
    result = await db.execute(stmt)
    return [_comment_attachment_to_out(a) for a in result.scalars().all()]


@router.get("/comment-attachments/{attachment_id}", response_model=CommentAttachmentOut)
async def get_comment_attachment(
    attachment_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    attachment = await db.get(CommentAttachment, attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="attachment not found")
    return _comment_attachment_to_out(attachment)


@router.delete("/comment-attachments/{attachment_id}")
async def delete_comment_attachment(
    attachment_id: int,
    user: CurrentUser = Depends(require_route("DELETE", "/api/comment-attachments/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    attachment = await db.get(CommentAttachment, attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="attachment not found")

    await _delete_record(attachment, db)
    return {"message": "attachment deleted successfully"}
