"""
API request and response models for TaskBoard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
projects/models.py, which own the internal domain representation. Route
handlers map between the two.

Field limits here are input-shape validation only. Business rules (password
strength, duplicate email, membership, access) live in the services so the
CLI and tests get them too.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.flows import EMAIL_PATTERN
from projects.models import Project, Task

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class VisibilityEnum(str, Enum):
    private = "private"
    team = "team"
    public = "public"


class ProjectStatusEnum(str, Enum):
    planning = "planning"
    active = "active"
    completed = "completed"
    archived = "archived"


class TaskStatusEnum(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"


class TaskPriorityEnum(str, Enum):
    none = "none"
    low = "low"
    medium = "medium"
    high = "high"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    reasons: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=128)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    avatar: Optional[str] = Field(default=None, max_length=2048)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class UserResponse(BaseModel):
    """Public profile. Never carries the password digest."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    avatar: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(TokenPairResponse):
    user: UserResponse


class LogoutResponse(BaseModel):
    success: bool = True


class LogoutAllResponse(BaseModel):
    success: bool = True
    tokens_revoked: int


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    issued_at: str
    expires_at: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    avatar: Optional[str] = Field(default=None, max_length=2048)


class RoleUpdate(BaseModel):
    role: RoleEnum


class DeactivateResponse(BaseModel):
    id: int
    is_active: bool
    sessions_revoked: int


class MemberResponse(UserResponse):
    is_owner: bool = False


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=2000)
    status: ProjectStatusEnum = ProjectStatusEnum.planning
    visibility: VisibilityEnum = VisibilityEnum.team
    members: list[int] = Field(default_factory=list, max_length=100)


class ProjectUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[ProjectStatusEnum] = None


class VisibilityUpdate(BaseModel):
    visibility: VisibilityEnum


class MemberAdd(BaseModel):
    user_id: int


class ProjectResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    status: str
    visibility: str
    owner_id: int
    members: list[int]
    created_at: str
    updated_at: str

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            status=project.status,
            visibility=project.visibility,
            owner_id=project.owner_id,
            members=list(project.members),
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    status: TaskStatusEnum = TaskStatusEnum.not_started
    priority: TaskPriorityEnum = TaskPriorityEnum.none
    assignee_id: Optional[int] = None
    due_date: Optional[str] = Field(default=None, max_length=32)


class TaskUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[TaskStatusEnum] = None
    priority: Optional[TaskPriorityEnum] = None
    assignee_id: Optional[int] = None
    unassign: bool = False
    due_date: Optional[str] = Field(default=None, max_length=32)


class TaskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    project_id: int
    title: str
    description: str
    status: str
    priority: str
    assignee_id: Optional[int] = None
    due_date: Optional[str] = None
    created_by: int
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            assignee_id=task.assignee_id,
            due_date=task.due_date,
            created_by=task.created_by,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
