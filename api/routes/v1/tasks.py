"""
api/routes/v1/tasks.py -- Task endpoints.

Routes:
  GET    /api/v1/projects/{id}/tasks   -- tasks of a project (read tier)
  POST   /api/v1/projects/{id}/tasks   -- create (contributor)
  GET    /api/v1/tasks/{id}            -- detail (read tier of the project)
  PATCH  /api/v1/tasks/{id}            -- edit (contributor)
  DELETE /api/v1/tasks/{id}            -- delete (contributor)

Tasks have no visibility of their own; every check runs against the task's
project. Contributors are admins, the owner, and members of a non-private
project. Public visibility alone lets a stranger read but not write.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.models import TaskCreate, TaskResponse, TaskUpdate
from auth.dependencies import get_current_principal
from auth.models import Principal
from projects.service import TaskService

router = APIRouter(dependencies=[Depends(get_current_principal)])


def _service(request: Request) -> TaskService:
    return request.app.state.tasks


@router.get("/projects/{project_id}/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[TaskResponse]:
    return [TaskResponse.from_task(t) for t in _service(request).list_for_project(principal, project_id)]


@router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request,
    project_id: int,
    body: TaskCreate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    task = _service(request).create(
        principal,
        project_id,
        title=body.title,
        description=body.description,
        status=body.status.value,
        priority=body.priority.value,
        assignee_id=body.assignee_id,
        due_date=body.due_date,
    )
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    request: Request,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    return TaskResponse.from_task(_service(request).get(principal, task_id))


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    """Partial update. Send "unassign": true to clear the assignee."""
    changes = body.model_dump(exclude_none=True)
    for name in ("status", "priority"):
        if name in changes:
            changes[name] = getattr(body, name).value
    return TaskResponse.from_task(_service(request).update(principal, task_id, **changes))


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(
    request: Request,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
) -> Response:
    _service(request).delete(principal, task_id)
    return Response(status_code=204)
