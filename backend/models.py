# models.py - Database models for buildefect
# - Integer primary keys (token subjects carry them as strings)
# - 3-role system (engineer, manager, observer)
# - Defects always belong to a building; comments always belong to a defect
# - Attachments are file references owned by a defect or a comment

from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Integer, Enum as SQLEnum, ForeignKey, Text, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    # Persist the lowercase value ("in_progress"), not the member name
    return [member.value for member in enum_cls]


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ENGINEER = "engineer"
    MANAGER = "manager"
    OBSERVER = "observer"


class DefectStatus(str, PyEnum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    CLOSED = "closed"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    login = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False, default="")
    lastname = Column(String, nullable=False, default="")
    role = Column(
        SQLEnum(UserRole, values_callable=_enum_values, name="user_role"),
        default=UserRole.ENGINEER,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# BUILDINGS
# ============================================================

class Building(Base):
    __tablename__ = "buildings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False, default="")
    stage = Column(String, nullable=False, default="", index=True)  # free text, e.g. "foundation"
    created_at = Column(DateTime(timezone=True), default=utcnow)

    defects = relationship(
        "Defect", back_populates="building", cascade="all, delete-orphan",
    )


# ============================================================
# DEFECTS
# ============================================================

class Defect(Base):
    __tablename__ = "defects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    building_id = Column(Integer, ForeignKey("buildings.id"), nullable=False, index=True)
    created_by_person_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    updated_by_person_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    priority = Column(String, nullable=False, default="")  # low, medium, high (not enforced)
    responsible_person_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        SQLEnum(DefectStatus, values_callable=_enum_values, name="defect_status"),
        default=DefectStatus.NEW,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    building = relationship("Building", back_populates="defects")
    created_by = relationship("User", foreign_keys=[created_by_person_id])
    updated_by = relationship("User", foreign_keys=[updated_by_person_id])
    responsible = relationship("User", foreign_keys=[responsible_person_id])
    comments = relationship(
        "Comment", back_populates="defect", cascade="all, delete-orphan",
        order_by="Comment.created_at",
    )
    attachments = relationship(
        "DefectAttachment", back_populates="defect", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_defect_building_status", "building_id", "status"),
    )


class DefectAttachment(Base):
    """File attached to a defect"""
    __tablename__ = "defect_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    defect_id = Column(Integer, ForeignKey("defects.id"), nullable=False, index=True)
    url = Column(String, nullable=False)  # path relative to UPLOAD_ROOT
    created_at = Column(DateTime(timezone=True), default=utcnow)

    defect = relationship("Defect", back_populates="attachments")


# ============================================================
# COMMENTS
# ============================================================

class Comment(Base):
    """Write-once note on a defect"""
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    defect_id = Column(Integer, ForeignKey("defects.id"), nullable=False, index=True)
    created_by_person_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    defect = relationship("Defect", back_populates="comments")
    created_by = relationship("User")
    attachments = relationship(
        "CommentAttachment", back_populates="comment", cascade="all, delete-orphan",
    )


class CommentAttachment(Base):
    """File attached to a comment"""
    __tablename__ = "comment_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    comment_id = Column(Integer, ForeignKey("comments.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    comment = relationship("Comment", back_populates="attachments")
