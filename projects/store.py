"""
projects/store.py -- SQLAlchemy-backed persistence for projects, members and tasks.

Uses SQLAlchemy Core (not ORM) so the dataclasses in projects/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. ProjectStore is the repository; the
_row_to_* functions are the mappers. Use cases never touch SQL directly, and
this module makes no authorization decisions -- it returns rows, callers ask
AccessPolicy.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ProjectStore("sqlite:///:memory:")
    pid = store.create_project(Project(name="Launch", owner_id=1))
    store.add_member(pid, 2)
    project = store.get_project(pid)      # members == [2]
    store.close()
"""

from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, UniqueConstraint, or_, select
from sqlalchemy.engine import Engine

from core.database import make_engine, now_iso
from projects.models import Project, Task

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("status", String(20), nullable=False, server_default="planning"),
    Column("visibility", String(20), nullable=False, server_default="team"),
    Column("owner_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("ix_projects_owner_id", "owner_id"),
)

_members = Table(
    "project_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("added_at", String(32), nullable=False),
    UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    Index("ix_project_members_user_id", "user_id"),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, nullable=False),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("status", String(20), nullable=False, server_default="not_started"),
    Column("priority", String(10), nullable=False, server_default="none"),
    Column("assignee_id", Integer),
    Column("due_date", String(32)),
    Column("created_by", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("ix_tasks_project_id", "project_id"),
)

_PROJECT_FIELDS = {"name", "description", "status", "visibility"}
_TASK_FIELDS = {"title", "description", "status", "priority", "assignee_id", "due_date"}


class ProjectStore:
    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> int:
        """Insert a project (and any initial members); return its ID."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _projects.insert().values(
                    name=project.name,
                    description=project.description,
                    status=project.status,
                    visibility=project.visibility,
                    owner_id=project.owner_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            project_id = result.inserted_primary_key[0]
            for user_id in dict.fromkeys(project.members):
                if user_id != project.owner_id:
                    conn.execute(_members.insert().values(project_id=project_id, user_id=user_id, added_at=now))
            conn.commit()
        return project_id

    def get_project(self, project_id: int) -> Optional[Project]:
        with self.engine.connect() as conn:
            row = conn.execute(_projects.select().where(_projects.c.id == project_id)).fetchone()
            if row is None:
                return None
            members = self._members_by_project(conn, [project_id])
        return _row_to_project(row, members.get(project_id, []))

    def list_projects(self) -> list[Project]:
        """Every project, newest first. Admin listings only."""
        with self.engine.connect() as conn:
            rows = conn.execute(_projects.select().order_by(_projects.c.created_at.desc(), _projects.c.id.desc())).fetchall()
            members = self._members_by_project(conn, [r.id for r in rows])
        return [_row_to_project(r, members.get(r.id, [])) for r in rows]

    def list_projects_for(self, user_id: int) -> list[Project]:
        """Projects user_id owns, belongs to, or that are public (newest first).

        This is a candidate set, not an access decision: a private project the
        user is a member of is returned and then filtered out by the policy.
        """
        member_of = select(_members.c.project_id).where(_members.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(
                _projects.select()
                .where(
                    or_(
                        _projects.c.owner_id == user_id,
                        _projects.c.visibility == "public",
                        _projects.c.id.in_(member_of),
                    )
                )
                .order_by(_projects.c.created_at.desc(), _projects.c.id.desc())
            ).fetchall()
            members = self._members_by_project(conn, [r.id for r in rows])
        return [_row_to_project(r, members.get(r.id, [])) for r in rows]

    def update_project(self, project_id: int, **fields) -> bool:
        unknown = set(fields) - _PROJECT_FIELDS
        if unknown:
            raise ValueError(f"Unknown project fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _projects.update().where(_projects.c.id == project_id).values(updated_at=now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_project(self, project_id: int) -> list[int]:
        """Delete a project with its members and tasks. Returns the deleted task IDs."""
        with self.engine.connect() as conn:
            task_ids = [r[0] for r in conn.execute(select(_tasks.c.id).where(_tasks.c.project_id == project_id))]
            conn.execute(_tasks.delete().where(_tasks.c.project_id == project_id))
            conn.execute(_members.delete().where(_members.c.project_id == project_id))
            conn.execute(_projects.delete().where(_projects.c.id == project_id))
            conn.commit()
        return task_ids

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_member(self, project_id: int, user_id: int) -> None:
        """Raises sqlalchemy.exc.IntegrityError if user_id is already a member."""
        with self.engine.connect() as conn:
            conn.execute(_members.insert().values(project_id=project_id, user_id=user_id, added_at=now_iso()))
            conn.execute(_projects.update().where(_projects.c.id == project_id).values(updated_at=now_iso()))
            conn.commit()

    def remove_member(self, project_id: int, user_id: int) -> bool:
        """Remove a member and unassign their tasks in the project."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.delete().where((_members.c.project_id == project_id) & (_members.c.user_id == user_id))
            )
            conn.execute(
                _tasks.update()
                .where((_tasks.c.project_id == project_id) & (_tasks.c.assignee_id == user_id))
                .values(assignee_id=None, updated_at=now_iso())
            )
            conn.execute(_projects.update().where(_projects.c.id == project_id).values(updated_at=now_iso()))
            conn.commit()
        return result.rowcount > 0

    def _members_by_project(self, conn, project_ids: list[int]) -> dict[int, list[int]]:
        if not project_ids:
            return {}
        rows = conn.execute(
            select(_members.c.project_id, _members.c.user_id)
            .where(_members.c.project_id.in_(project_ids))
            .order_by(_members.c.id)
        ).fetchall()
        result: dict[int, list[int]] = {}
        for project_id, user_id in rows:
            result.setdefault(project_id, []).append(user_id)
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    project_id=task.project_id,
                    title=task.title,
                    description=task.description,
                    status=task.status,
                    priority=task.priority,
                    assignee_id=task.assignee_id,
                    due_date=task.due_date,
                    created_by=task.created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int) -> Optional[Task]:
        with self.engine.connect() as conn:
            row = conn.execute(_tasks.select().where(_tasks.c.id == task_id)).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, project_id: int) -> list[Task]:
        """Tasks of one project in creation order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tasks.select().where(_tasks.c.project_id == project_id).order_by(_tasks.c.id)
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def update_task(self, task_id: int, **fields) -> bool:
        unknown = set(fields) - _TASK_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.update().where(_tasks.c.id == task_id).values(updated_at=now_iso(), **fields))
            conn.commit()
        return result.rowcount > 0

    def delete_task(self, task_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.delete().where(_tasks.c.id == task_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_project(row, members: list[int]) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        description=row.description or "",
        status=row.status,
        visibility=row.visibility,
        owner_id=row.owner_id,
        members=list(members),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        description=row.description or "",
        status=row.status,
        priority=row.priority,
        assignee_id=row.assignee_id,
        due_date=row.due_date,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
