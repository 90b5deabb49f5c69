from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from database import Base
import config


def utcnow():
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------
# User Model
# ------------------------------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    full_name = Column(String(120), nullable=True)
    role = Column(String(20), default=config.ROLE_TEAM_MEMBER, index=True)  # admin / team_member
    active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)

    # Relationships (tasks = tasks assigned to this user; primaryjoin disambiguates from assigned_by)
    tasks = relationship(
        "Task",
        back_populates="assignee",
        primaryjoin="User.id == Task.assigned_to",
    )
    comments = relationship("DocumentComment", back_populates="user")
    notifications = relationship("Notification", back_populates="user")


# ------------------------------------------------------------------
# Task Model
# ------------------------------------------------------------------

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)

    status = Column(String(20), default=config.TASK_STATUS_PENDING, nullable=False)  # pending / in_progress / completed / cancelled
    priority = Column(String(20), default=config.DEFAULT_TASK_PRIORITY)  # low / medium / high

    deadline = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    assigned_to = Column(Integer, ForeignKey("users.id"), index=True)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    # Relationships
    assignee = relationship("User", back_populates="tasks", foreign_keys=[assigned_to])
    assigner = relationship("User", foreign_keys=[assigned_by])
    activities = relationship("TaskActivity", back_populates="task")


# ------------------------------------------------------------------
# TaskActivity Model (audit trail of task changes, never updated)
# ------------------------------------------------------------------

class TaskActivity(Base):
    __tablename__ = "task_activities"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String(255), nullable=False)  # e.g. "Status changed from pending to completed"

    created_at = Column(DateTime, default=utcnow)

    task = relationship("Task", back_populates="activities")
    user = relationship("User")


# ------------------------------------------------------------------
# DocumentComment Model (counted for collaboration metrics)
# ------------------------------------------------------------------

class DocumentComment(Base):
    __tablename__ = "document_comments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    document = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="comments")


# ------------------------------------------------------------------
# Notification Model
# ------------------------------------------------------------------

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # e.g. "task_assigned"
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="notifications")


# ------------------------------------------------------------------
# NotificationPreference Model (one row per user)
# ------------------------------------------------------------------

class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    email_notifications = Column(Boolean, default=True)
    task_assignments = Column(Boolean, default=True)
    task_updates = Column(Boolean, default=True)
    task_deadlines = Column(Boolean, default=True)

    updated_at = Column(DateTime, default=utcnow)
