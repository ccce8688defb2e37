"""
projects/models.py -- Domain dataclasses for projects and tasks.

These are pure data containers with zero logic. Who may read or change them
is decided by auth/policy.py; persistence lives in projects/store.py.

A Project carries the visibility tuple (owner_id, members, visibility) that
AccessPolicy reads. Tasks have no visibility of their own -- every task check
is made against the task's project.
"""

from dataclasses import dataclass, field
from typing import Optional

PROJECT_STATUSES = ("planning", "active", "completed", "archived")
TASK_STATUSES = ("not_started", "in_progress", "completed")
TASK_PRIORITIES = ("none", "low", "medium", "high")


@dataclass
class Project:
    """A container for tasks, owned by one user and shared with members.

    members never includes owner_id; ownership is checked separately.
    id is None before the record is written to the database.
    """

    name: str
    owner_id: int
    visibility: str = "team"  # "private" | "team" | "public"
    description: str = ""
    status: str = "planning"  # "planning" | "active" | "completed" | "archived"
    members: list[int] = field(default_factory=list)
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Task:
    """A unit of work inside a project.

    assignee_id, when set, is the project owner or one of its members.
    id is None before the record is written to the database.
    """

    project_id: int
    title: str
    created_by: int
    description: str = ""
    status: str = "not_started"  # "not_started" | "in_progress" | "completed"
    priority: str = "none"  # "none" | "low" | "medium" | "high"
    assignee_id: Optional[int] = None
    due_date: Optional[str] = None  # ISO 8601 date
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
