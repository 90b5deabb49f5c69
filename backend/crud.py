import calendar
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, case, func, or_
from datetime import datetime, timezone, timedelta
from fastapi import HTTPException, status

from models import (
    User,
    Task,
    TaskActivity,
    DocumentComment,
    Notification,
    NotificationPreference,
)
from schemas import (
    UserAdminUpdate,
    TaskCreate,
    TaskUpdate,
    NotificationPreferenceUpdate,
)
import config
import logging

# Configure logging
logger = logging.getLogger(__name__)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to UTC before it is stored.
    Naive values are taken to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def status_change_action(old_status: str, new_status: str) -> str:
    return f"Status changed from {old_status} to {new_status}"


def check_status_transition(current_status: str, new_status: str):
    """
    Validate a task status change against config.VALID_STATUS_TRANSITIONS.
    Returns (is_valid, message); message is None when the change is allowed.
    """
    allowed = config.VALID_STATUS_TRANSITIONS.get(current_status)
    if allowed is None:
        return False, f"Invalid current status: {current_status}"

    if new_status not in allowed:
        return False, (
            f"Cannot change task status from '{current_status}' to '{new_status}'. "
            f"Valid transitions are: {', '.join(allowed)}"
        )

    return True, None


# ------------------------------------------------------------------
# USER CRUD OPERATIONS
# ------------------------------------------------------------------

def get_user_by_id(db: Session, user_id: int):
    return db.query(User).filter(User.id == user_id).first()


def get_users_page(db: Session, page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE):
    """
    One page of users ordered by username, plus the total user count.
    """
    offset = (page - 1) * limit
    users = db.query(User).order_by(User.username).offset(offset).limit(limit).all()
    total = db.query(func.count(User.id)).scalar() or 0
    return users, total


def update_user(db: Session, user_id: int, payload: UserAdminUpdate, current_user: User):
    """
    Admin change of another user's role / active flag.
    Admins cannot modify their own account.
    """
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify own account"
        )

    user = get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if payload.role is not None:
        user.role = payload.role
    if payload.active is not None:
        user.active = payload.active

    db.commit()
    db.refresh(user)
    logger.info(f"User {user_id} updated by admin {current_user.id}")
    return user


def get_team_members(db: Session):
    """
    All users holding the team-member role, for the performance leaderboard.
    """
    return (
        db.query(User)
        .filter(User.role == config.ROLE_TEAM_MEMBER)
        .order_by(User.id)
        .all()
    )


# ------------------------------------------------------------------
# TASK CRUD OPERATIONS
# ------------------------------------------------------------------

def create_task(db: Session, task: TaskCreate, assigned_by: int):
    """
    Create a task in the pending state and notify the assignee.
    """
    assignee = get_user_by_id(db, task.assigned_to)
    if not assignee:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with ID {task.assigned_to} not found"
        )

    now = datetime.now(timezone.utc)
    db_task = Task(
        title=task.title,
        description=task.description,
        priority=task.priority,
        assigned_to=task.assigned_to,
        assigned_by=assigned_by,
        deadline=to_utc(task.deadline),
        status=config.TASK_STATUS_PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(db_task)
    db.commit()
    db.refresh(db_task)

    create_notification(
        db,
        user_id=task.assigned_to,
        type="task_assigned",
        title="New task assigned",
        message=f"You have been assigned the task \"{db_task.title}\"",
    )

    logger.info(f"Task created: {db_task.title} (ID: {db_task.id}) by user {assigned_by}")
    return db_task


def get_task_by_id(db: Session, task_id: int):
    return db.query(Task).filter(Task.id == task_id).first()


def get_tasks_for_user(db: Session, user_id: int, order_by_updated: bool = False):
    """
    Tasks assigned to a user, newest first (by creation, or by last update for admin views).
    """
    order = Task.updated_at.desc() if order_by_updated else Task.created_at.desc()
    return (
        db.query(Task)
        .filter(Task.assigned_to == user_id)
        .order_by(order, Task.id.desc())
        .all()
    )


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _task_counts(db: Session, conditions, now: datetime):
    row = (
        db.query(
            _count_where(Task.status == config.TASK_STATUS_PENDING).label("pending"),
            _count_where(Task.status == config.TASK_STATUS_COMPLETED).label("completed"),
            _count_where(
                and_(Task.status == config.TASK_STATUS_PENDING, Task.deadline < now)
            ).label("overdue"),
        )
        .filter(*conditions)
        .one()
    )
    return {"pending": int(row.pending), "completed": int(row.completed), "overdue": int(row.overdue)}


def _one_month_before(day: datetime) -> datetime:
    year, month = (day.year - 1, 12) if day.month == 1 else (day.year, day.month - 1)
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def get_user_task_counts(db: Session, user_id: int, now: Optional[datetime] = None):
    """
    Pending / completed / overdue counts for one user's tasks.
    """
    now = to_utc(now) or datetime.now(timezone.utc)
    return _task_counts(db, [Task.assigned_to == user_id], now)


def get_task_stats(
    db: Session,
    user_id: int,
    status_filter: Optional[str] = None,
    priority: Optional[str] = None,
    date_range: Optional[str] = None,
    search: Optional[str] = None,
    now: Optional[datetime] = None,
):
    """
    Dashboard statistics for a user's tasks.
    Filters: status, priority, date_range (today / week / month) on created_at,
    and a case-insensitive search over title and description.
    """
    now = to_utc(now) or datetime.now(timezone.utc)
    conditions = [Task.assigned_to == user_id]

    if status_filter and status_filter != "all":
        conditions.append(Task.status == status_filter)

    if priority and priority != "all":
        conditions.append(Task.priority == priority)

    if date_range and date_range != "all":
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if date_range == "today":
            conditions.append(Task.created_at >= today)
        elif date_range == "week":
            conditions.append(Task.created_at >= today - timedelta(days=7))
        elif date_range == "month":
            conditions.append(Task.created_at >= _one_month_before(today))

    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))

    stats = _task_counts(db, conditions, now)

    stats["upcoming_deadlines"] = (
        db.query(Task)
        .filter(
            *conditions,
            Task.status.in_([config.TASK_STATUS_PENDING, config.TASK_STATUS_IN_PROGRESS]),
        )
        .order_by(Task.deadline.is_(None), Task.deadline.asc())
        .limit(config.TASK_STATS_PREVIEW_LIMIT)
        .all()
    )
    stats["recently_completed"] = (
        db.query(Task)
        .filter(*conditions, Task.status == config.TASK_STATUS_COMPLETED)
        .order_by(Task.completed_at.desc())
        .limit(config.TASK_STATS_PREVIEW_LIMIT)
        .all()
    )
    return stats


def update_task(db: Session, task_id: int, payload: TaskUpdate, user_id: int):
    """
    Partial task update from the REST API.
    A status change must follow the transition table; it stamps completed_at
    when the task is completed, clears it otherwise, and records an activity.
    """
    task = get_task_by_id(db, task_id)
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found"
        )

    changes = payload.model_dump(exclude_unset=True)
    new_status = changes.pop("status", None)
    old_status = task.status
    now = datetime.now(timezone.utc)

    if new_status is not None and new_status != old_status:
        is_valid, message = check_status_transition(old_status, new_status)
        if not is_valid:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=message
            )
        task.status = new_status
        task.completed_at = now if new_status == config.TASK_STATUS_COMPLETED else None
    else:
        new_status = None

    if "deadline" in changes:
        changes["deadline"] = to_utc(changes["deadline"])
    for field, value in changes.items():
        setattr(task, field, value)

    task.updated_at = now
    db.commit()
    db.refresh(task)

    if new_status is not None:
        create_task_activity(db, task_id, user_id, status_change_action(old_status, new_status), now)

    logger.info(f"Task {task_id} updated by user {user_id}")
    return task


def update_task_status(
    db: Session,
    task_id: int,
    new_status: str,
    completed_at: Optional[datetime],
    updated_at: datetime,
):
    """
    Write a new status in one unit of work and return the refreshed row,
    or None if the task no longer exists.
    """
    task = get_task_by_id(db, task_id)
    if not task:
        return None

    task.status = new_status
    task.completed_at = to_utc(completed_at)
    task.updated_at = to_utc(updated_at)
    db.commit()
    db.refresh(task)
    return task


def delete_task(db: Session, task_id: int) -> bool:
    """
    Delete a task together with its activity trail.
    """
    delete_task_activities(db, task_id)
    task = get_task_by_id(db, task_id)
    if not task:
        return False

    db.delete(task)
    db.commit()
    logger.info(f"Task {task_id} deleted")
    return True


# ------------------------------------------------------------------
# TASK ACTIVITY OPERATIONS
# ------------------------------------------------------------------

def create_task_activity(
    db: Session,
    task_id: int,
    user_id: int,
    action: str,
    created_at: Optional[datetime] = None,
):
    activity = TaskActivity(
        task_id=task_id,
        user_id=user_id,
        action=action,
        created_at=to_utc(created_at) or datetime.now(timezone.utc),
    )
    db.add(activity)
    db.commit()
    db.refresh(activity)
    return activity


def get_task_activities(db: Session, task_id: int):
    """
    Activity trail of a task with the acting user, newest first.
    """
    rows = (
        db.query(TaskActivity, User.username)
        .join(User, TaskActivity.user_id == User.id)
        .filter(TaskActivity.task_id == task_id)
        .order_by(TaskActivity.created_at.desc(), TaskActivity.id.desc())
        .all()
    )
    return [
        {
            "id": activity.id,
            "action": activity.action,
            "created_at": activity.created_at,
            "user": {"id": activity.user_id, "username": username},
        }
        for activity, username in rows
    ]


def delete_task_activities(db: Session, task_id: int) -> int:
    count = db.query(TaskActivity).filter(TaskActivity.task_id == task_id).delete()
    db.commit()
    return count


# ------------------------------------------------------------------
# PERFORMANCE AGGREGATES (one independent query each)
# ------------------------------------------------------------------

def count_completed_tasks(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(Task.id))
        .filter(Task.assigned_to == user_id, Task.status == config.TASK_STATUS_COMPLETED)
        .scalar()
    ) or 0


def count_total_tasks(db: Session, user_id: int) -> int:
    return db.query(func.count(Task.id)).filter(Task.assigned_to == user_id).scalar() or 0


def count_on_time_completed(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(Task.id))
        .filter(
            Task.assigned_to == user_id,
            Task.status == config.TASK_STATUS_COMPLETED,
            Task.completed_at <= Task.deadline,
        )
        .scalar()
    ) or 0


def count_comments(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(DocumentComment.id))
        .filter(DocumentComment.user_id == user_id)
        .scalar()
    ) or 0


def count_activities(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(TaskActivity.id))
        .filter(TaskActivity.user_id == user_id)
        .scalar()
    ) or 0


# ------------------------------------------------------------------
# NOTIFICATION OPERATIONS
# ------------------------------------------------------------------

def create_notification(db: Session, user_id: int, type: str, title: str, message: str):
    notification = Notification(user_id=user_id, type=type, title=title, message=message)
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def get_notifications(db: Session, user_id: int, limit: int = config.NOTIFICATION_LIST_LIMIT):
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def mark_all_notifications_read(db: Session, user_id: int) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .update({Notification.read: True})
    )
    db.commit()
    return count


def mark_notification_read(db: Session, notification_id: int, user_id: int):
    """
    Mark one of the user's notifications as read; another user's
    notification is reported as not found.
    """
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification


def get_notification_preferences(db: Session, user_id: int):
    """
    Fetch a user's notification preferences, creating the defaults on first access.
    """
    preferences = (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id)
        .first()
    )
    if preferences:
        return preferences

    preferences = NotificationPreference(user_id=user_id)
    db.add(preferences)
    db.commit()
    db.refresh(preferences)
    return preferences


def update_notification_preferences(db: Session, user_id: int, payload: NotificationPreferenceUpdate):
    preferences = get_notification_preferences(db, user_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(preferences, field, value)
    preferences.updated_at = datetime.now(timezone.utc)

    db.commit()
    db.refresh(preferences)
    return preferences
