"""
projects/service.py -- Project, membership and task use cases.

Every use case follows the same shape:
  1. load the resource (cache-aside; fills go through ResourceCache.fill)
  2. ask the injected AccessPolicy -- exactly one require_* call
  3. touch storage
  4. delete every cache key the write affects

Which check guards what:
  require_access              read project / members / tasks
  require_access(contribute)  create, edit, delete task content
  require_modify              project details, visibility, membership, delete

Invalidation:
  project writes     project:{id} + every project:user: listing (listings
                     embed name, status, visibility and members; a public
                     project is in everyone's)
  membership writes  same as project writes
  task writes        task:{id} + task:project:{pid}: listings
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Principal
from auth.policy import VISIBILITIES, AccessPolicy
from auth.store import UserStore
from cache import keys
from cache.store import ResourceCache
from core.config import Settings
from core.errors import NotFound, ValidationFailure
from projects.models import PROJECT_STATUSES, TASK_PRIORITIES, TASK_STATUSES, Project, Task
from projects.store import ProjectStore

logger = logging.getLogger("taskboard.projects")


def _invalid(message: str) -> ValidationFailure:
    return ValidationFailure(message, reasons=[message])


def _check_choice(value: Optional[str], allowed: tuple, label: str) -> None:
    if value is not None and value not in allowed:
        raise _invalid(f"{label} must be one of {', '.join(allowed)}")


def _check_text(value: Optional[str], label: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise _invalid(f"{label} is required")
    if len(value) > max_length:
        raise _invalid(f"{label} must be at most {max_length} characters")
    return value


def _snapshot(record) -> Optional[dict]:
    return asdict(record) if record is not None else None


class ProjectService:
    def __init__(
        self,
        store: ProjectStore,
        users: UserStore,
        policy: AccessPolicy,
        cache: ResourceCache,
        settings: Settings,
    ) -> None:
        self.store = store
        self.users = users
        self.policy = policy
        self.cache = cache
        self.settings = settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, project_id: int) -> Project:
        """Fetch a project through the cache. No access check -- callers make one."""
        cache_key = keys.project(project_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return Project(**cached)
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFound("Project not found")
        self.cache.fill(
            cache_key,
            asdict(project),
            self.settings.cache_ttl_project,
            lambda: _snapshot(self.store.get_project(project_id)),
        )
        return project

    def get(self, principal: Principal, project_id: int) -> Project:
        project = self.load(project_id)
        self.policy.require_access(project, principal, label="Project")
        return project

    def list_visible(
        self,
        principal: Principal,
        status: Optional[str] = None,
        visibility: Optional[str] = None,
    ) -> list[Project]:
        """Projects the principal may read, optionally filtered, newest first."""
        _check_choice(status, PROJECT_STATUSES, "status")
        _check_choice(visibility, VISIBILITIES, "visibility")
        cache_key = keys.project_listing(principal.id, status, visibility)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return [Project(**p) for p in cached]

        projects = self._visible(principal, status, visibility)
        self.cache.fill(
            cache_key,
            [asdict(p) for p in projects],
            self.settings.cache_ttl_listing,
            lambda: [asdict(p) for p in self._visible(principal, status, visibility)],
        )
        return projects

    def members(self, principal: Principal, project_id: int) -> list[dict]:
        """Public profiles of the owner followed by the members."""
        project = self.load(project_id)
        self.policy.require_access(project, principal, label="Project")
        result = []
        for user_id in [project.owner_id, *project.members]:
            user = self.users.find_by_id(user_id)
            if user is not None:
                profile = user.public_profile()
                profile["is_owner"] = user_id == project.owner_id
                result.append(profile)
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        principal: Principal,
        name: str,
        description: str = "",
        status: str = "planning",
        visibility: str = "team",
        members: Optional[list[int]] = None,
    ) -> Project:
        name = _check_text(name, "Project name", 100)
        if name is None:
            raise _invalid("Project name is required")
        _check_choice(status, PROJECT_STATUSES, "status")
        _check_choice(visibility, VISIBILITIES, "visibility")
        member_ids = [m for m in dict.fromkeys(members or []) if m != principal.id]
        for user_id in member_ids:
            self._require_active_user(user_id)

        project_id = self.store.create_project(
            Project(
                name=name,
                description=description or "",
                status=status,
                visibility=visibility,
                owner_id=principal.id,
                members=member_ids,
            )
        )
        self.cache.delete_prefix(keys.PROJECT_LISTINGS)
        logger.info("Project created project_id=%s owner=%s", project_id, principal.id)
        return self.store.get_project(project_id)

    def update(self, principal: Principal, project_id: int, **changes) -> Project:
        """Change name / description / status. Owner or admin only."""
        updates = {k: v for k, v in changes.items() if k in ("name", "description", "status") and v is not None}
        if not updates:
            raise _invalid("At least one field must be provided for update")
        if "name" in updates:
            updates["name"] = _check_text(updates["name"], "Project name", 100)
        _check_choice(updates.get("status"), PROJECT_STATUSES, "status")

        project = self.load(project_id)
        self.policy.require_modify(project, principal, label="Project")
        self.store.update_project(project_id, **updates)
        self._invalidate_project(project_id)
        logger.info("Project updated project_id=%s by=%s fields=%s", project_id, principal.id, sorted(updates))
        return self._fresh(project_id)

    def update_visibility(self, principal: Principal, project_id: int, visibility: str) -> Project:
        _check_choice(visibility, VISIBILITIES, "visibility")
        if visibility is None:
            raise _invalid("visibility is required")
        project = self.load(project_id)
        self.policy.require_modify(project, principal, label="Project")
        self.store.update_project(project_id, visibility=visibility)
        self._invalidate_project(project_id)
        logger.info("Project visibility project_id=%s %s -> %s", project_id, project.visibility, visibility)
        return self._fresh(project_id)

    def delete(self, principal: Principal, project_id: int) -> None:
        project = self.load(project_id)
        self.policy.require_modify(project, principal, label="Project")
        task_ids = self.store.delete_project(project_id)
        self._invalidate_project(project_id)
        for task_id in task_ids:
            self.cache.delete(keys.task(task_id))
        self.cache.delete_prefix(keys.task_listings_for(project_id))
        logger.info("Project deleted project_id=%s by=%s tasks=%d", project_id, principal.id, len(task_ids))

    def add_member(self, principal: Principal, project_id: int, user_id: int) -> Project:
        project = self.load(project_id)
        self.policy.require_modify(project, principal, label="Project")
        self._require_active_user(user_id)
        if user_id == project.owner_id or user_id in project.members:
            raise _invalid("User is already a member of this project")
        try:
            self.store.add_member(project_id, user_id)
        except IntegrityError as exc:
            raise _invalid("User is already a member of this project") from exc
        self._invalidate_project(project_id)
        logger.info("Member added project_id=%s user_id=%s by=%s", project_id, user_id, principal.id)
        return self._fresh(project_id)

    def remove_member(self, principal: Principal, project_id: int, user_id: int) -> Project:
        project = self.load(project_id)
        self.policy.require_modify(project, principal, label="Project")
        if user_id == project.owner_id:
            raise _invalid("Cannot remove project owner from members")
        if user_id not in project.members:
            raise _invalid("User is not a member of this project")
        assigned = [t.id for t in self.store.list_tasks(project_id) if t.assignee_id == user_id]
        self.store.remove_member(project_id, user_id)
        self._invalidate_project(project_id)
        # Their tasks were unassigned in the same transaction.
        for task_id in assigned:
            self.cache.delete(keys.task(task_id))
        self.cache.delete_prefix(keys.task_listings_for(project_id))
        logger.info("Member removed project_id=%s user_id=%s by=%s", project_id, user_id, principal.id)
        return self._fresh(project_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _visible(self, principal: Principal, status: Optional[str], visibility: Optional[str]) -> list[Project]:
        candidates = self.store.list_projects() if principal.is_admin else self.store.list_projects_for(principal.id)
        return [
            p
            for p in candidates
            if self.policy.can_access(p, principal)
            and (status is None or p.status == status)
            and (visibility is None or p.visibility == visibility)
        ]

    def _fresh(self, project_id: int) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFound("Project not found")
        return project

    def _require_active_user(self, user_id: int) -> None:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if not user.is_active:
            raise _invalid("Cannot add inactive user to project")

    def _invalidate_project(self, project_id: int) -> None:
        self.cache.delete(keys.project(project_id))
        self.cache.delete_prefix(keys.PROJECT_LISTINGS)


class TaskService:
    def __init__(
        self,
        store: ProjectStore,
        projects: ProjectService,
        policy: AccessPolicy,
        cache: ResourceCache,
        settings: Settings,
    ) -> None:
        self.store = store
        self.projects = projects
        self.policy = policy
        self.cache = cache
        self.settings = settings

    def load(self, task_id: int) -> Task:
        cache_key = keys.task(task_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return Task(**cached)
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound("Task not found")
        self.cache.fill(
            cache_key,
            asdict(task),
            self.settings.cache_ttl_task,
            lambda: _snapshot(self.store.get_task(task_id)),
        )
        return task

    def get(self, principal: Principal, task_id: int) -> Task:
        task = self.load(task_id)
        project = self._project_of(task)
        self.policy.require_access(project, principal, label="Task")
        return task

    def list_for_project(self, principal: Principal, project_id: int) -> list[Task]:
        project = self.projects.load(project_id)
        self.policy.require_access(project, principal, label="Project")
        cache_key = keys.task_listing(project_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return [Task(**t) for t in cached]
        tasks = self.store.list_tasks(project_id)
        self.cache.fill(
            cache_key,
            [asdict(t) for t in tasks],
            self.settings.cache_ttl_task,
            lambda: [asdict(t) for t in self.store.list_tasks(project_id)],
        )
        return tasks

    def create(
        self,
        principal: Principal,
        project_id: int,
        title: str,
        description: str = "",
        status: str = "not_started",
        priority: str = "none",
        assignee_id: Optional[int] = None,
        due_date: Optional[str] = None,
    ) -> Task:
        title = _check_text(title, "Task title", 200)
        if title is None:
            raise _invalid("Task title is required")
        _check_choice(status, TASK_STATUSES, "status")
        _check_choice(priority, TASK_PRIORITIES, "priority")

        project = self.projects.load(project_id)
        self.policy.require_access(project, principal, contribute=True, label="Project")
        _check_assignee(project, assignee_id)

        task_id = self.store.create_task(
            Task(
                project_id=project_id,
                title=title,
                description=description or "",
                status=status,
                priority=priority,
                assignee_id=assignee_id,
                due_date=due_date,
                created_by=principal.id,
            )
        )
        self.cache.delete_prefix(keys.task_listings_for(project_id))
        logger.info("Task created task_id=%s project_id=%s by=%s", task_id, project_id, principal.id)
        return self.store.get_task(task_id)

    def update(self, principal: Principal, task_id: int, **changes) -> Task:
        """Apply field changes. assignee_id=None in changes is ignored; use unassign=True to clear it."""
        unassign = changes.pop("unassign", False)
        allowed = ("title", "description", "status", "priority", "assignee_id", "due_date")
        updates = {k: v for k, v in changes.items() if k in allowed and v is not None}
        if unassign:
            updates["assignee_id"] = None
        if not updates:
            raise _invalid("At least one field must be provided for update")
        if "title" in updates:
            updates["title"] = _check_text(updates["title"], "Task title", 200)
        _check_choice(updates.get("status"), TASK_STATUSES, "status")
        _check_choice(updates.get("priority"), TASK_PRIORITIES, "priority")

        task = self.load(task_id)
        project = self._project_of(task)
        self.policy.require_access(project, principal, contribute=True, label="Task")
        if updates.get("assignee_id") is not None:
            _check_assignee(project, updates["assignee_id"])

        self.store.update_task(task_id, **updates)
        self._invalidate(task)
        logger.info("Task updated task_id=%s by=%s fields=%s", task_id, principal.id, sorted(updates))
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound("Task not found")
        return task

    def delete(self, principal: Principal, task_id: int) -> None:
        task = self.load(task_id)
        project = self._project_of(task)
        self.policy.require_access(project, principal, contribute=True, label="Task")
        self.store.delete_task(task_id)
        self._invalidate(task)
        logger.info("Task deleted task_id=%s project_id=%s by=%s", task_id, task.project_id, principal.id)

    def _project_of(self, task: Task) -> Project:
        try:
            return self.projects.load(task.project_id)
        except NotFound:
            # Orphaned task row; report the task, not the project.
            raise NotFound("Task not found") from None

    def _invalidate(self, task: Task) -> None:
        self.cache.delete(keys.task(task.id))
        self.cache.delete_prefix(keys.task_listings_for(task.project_id))


def _check_assignee(project: Project, assignee_id: Optional[int]) -> None:
    if assignee_id is None:
        return
    if assignee_id != project.owner_id and assignee_id not in project.members:
        raise _invalid("Assignee must be a member of the project")
