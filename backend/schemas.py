from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Annotated, Literal, Optional, List, Union


TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high"]
UserRole = Literal["admin", "team_member"]


class CamelModel(BaseModel):
    """Base for every payload the web client sees; fields go over the wire in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# =========================
# 🔹 USER SCHEMAS
# =========================

class UserAdminUpdate(CamelModel):
    role: Optional[UserRole] = None
    active: Optional[bool] = None


class UserResponse(CamelModel):
    id: int
    username: str
    full_name: Optional[str] = None
    role: str
    active: bool = True
    created_at: Optional[datetime] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class UserPageResponse(BaseModel):
    users: List[UserResponse]
    pagination: Pagination


class TeamMember(CamelModel):
    """Team-member user as seen by the performance leaderboard."""
    id: int
    username: str
    full_name: Optional[str] = None
    role: str


# =========================
# 🔹 TASK SCHEMAS
# =========================

class TaskCreate(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    priority: TaskPriority
    assigned_to: int
    deadline: Optional[datetime] = None


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[int] = None
    deadline: Optional[datetime] = None
    status: Optional[TaskStatus] = None


class TaskResponse(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: Optional[str] = None
    deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assigned_to: Optional[int] = None
    assigned_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaskCounts(CamelModel):
    pending: int = 0
    completed: int = 0
    overdue: int = 0


class TaskStatsResponse(TaskCounts):
    upcoming_deadlines: List[TaskResponse] = []
    recently_completed: List[TaskResponse] = []


# =========================
# 🔹 TASK ACTIVITY SCHEMAS
# =========================

class ActivityUser(BaseModel):
    id: int
    username: str


class TaskActivityRecord(CamelModel):
    """Stored audit entry, as returned by the data store."""
    id: int
    task_id: int
    user_id: int
    action: str
    created_at: datetime


class TaskActivityResponse(CamelModel):
    id: int
    action: str
    created_at: datetime
    user: ActivityUser


# =========================
# 🔹 NOTIFICATION SCHEMAS
# =========================

class NotificationResponse(CamelModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    read: bool = False
    created_at: datetime


class NotificationPreferenceUpdate(CamelModel):
    email_notifications: Optional[bool] = None
    task_assignments: Optional[bool] = None
    task_updates: Optional[bool] = None
    task_deadlines: Optional[bool] = None


class NotificationPreferenceResponse(CamelModel):
    id: int
    user_id: int
    email_notifications: bool
    task_assignments: bool
    task_updates: bool
    task_deadlines: bool
    updated_at: Optional[datetime] = None


# =========================
# 🔹 WEBSOCKET INBOUND MESSAGES
# =========================

class Handshake(CamelModel):
    """First frame on every connection: who is on the other end."""
    user_id: int = Field(gt=0, strict=True)
    username: str = Field(min_length=1)


class TaskChanges(CamelModel):
    status: TaskStatus
    completed_at: Optional[datetime] = None
    updated_at: datetime


class TaskUpdateMessage(CamelModel):
    type: Literal["task_update"]
    task_id: int
    changes: TaskChanges


class SubscribeTeamPerformanceMessage(CamelModel):
    type: Literal["subscribe_team_performance"]


InboundMessage = Annotated[
    Union[TaskUpdateMessage, SubscribeTeamPerformanceMessage],
    Field(discriminator="type"),
]

inbound_message_adapter = TypeAdapter(InboundMessage)


# =========================
# 🔹 WEBSOCKET OUTBOUND MESSAGES
# =========================

class ConnectedMessage(CamelModel):
    type: Literal["connected"] = "connected"
    message: str


class ErrorMessage(CamelModel):
    type: Literal["error"] = "error"
    code: str
    message: str


class TaskUpdateEvent(CamelModel):
    type: Literal["task_update", "task_update_success"] = "task_update"
    task: TaskResponse
    activity: TaskActivityResponse


class MemberMetrics(CamelModel):
    tasks_completed: int
    on_time_completion: int
    document_comments: int
    collaboration_score: int
    total_score: int


class MemberPerformance(CamelModel):
    id: int
    username: str
    full_name: Optional[str] = None
    role: str
    metrics: MemberMetrics


class TeamPerformanceEvent(CamelModel):
    type: Literal["team_performance"] = "team_performance"
    members: List[MemberPerformance]
