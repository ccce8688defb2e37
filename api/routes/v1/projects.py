"""
api/routes/v1/projects.py -- Project, visibility and membership endpoints.

Routes:
  POST   /api/v1/projects                              -- create (caller becomes owner)
  GET    /api/v1/projects                              -- projects visible to the caller
  GET    /api/v1/projects/{id}                         -- detail (read tier)
  PATCH  /api/v1/projects/{id}                         -- name / description / status (modify tier)
  DELETE /api/v1/projects/{id}                         -- delete with its tasks (modify tier)
  PATCH  /api/v1/projects/{id}/visibility              -- change visibility (modify tier)
  GET    /api/v1/projects/{id}/members                 -- owner + members (read tier)
  POST   /api/v1/projects/{id}/members                 -- add member (modify tier)
  DELETE /api/v1/projects/{id}/members/{user_id}       -- remove member (modify tier)

Access decisions are made by ProjectService through the shared AccessPolicy.
A project the caller cannot see returns 404; one they can see but not change
returns 403.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    MemberAdd,
    MemberResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectStatusEnum,
    ProjectUpdate,
    VisibilityEnum,
    VisibilityUpdate,
)
from auth.dependencies import get_current_principal
from auth.models import Principal
from projects.service import ProjectService

# Every project route requires authentication; handlers that need the
# principal declare it again and FastAPI resolves the dependency once.
router = APIRouter(dependencies=[Depends(get_current_principal)])


def _service(request: Request) -> ProjectService:
    return request.app.state.projects


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    request: Request,
    body: ProjectCreate,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    project = _service(request).create(
        principal,
        name=body.name,
        description=body.description,
        status=body.status.value,
        visibility=body.visibility.value,
        members=body.members,
    )
    return ProjectResponse.from_project(project)


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(
    request: Request,
    status: Optional[ProjectStatusEnum] = Query(default=None),
    visibility: Optional[VisibilityEnum] = Query(default=None),
    principal: Principal = Depends(get_current_principal),
) -> list[ProjectResponse]:
    projects = _service(request).list_visible(
        principal,
        status=status.value if status else None,
        visibility=visibility.value if visibility else None,
    )
    return [ProjectResponse.from_project(p) for p in projects]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    return ProjectResponse.from_project(_service(request).get(principal, project_id))


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    request: Request,
    project_id: int,
    body: ProjectUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    changes = body.model_dump(exclude_none=True)
    if "status" in changes:
        changes["status"] = body.status.value
    return ProjectResponse.from_project(_service(request).update(principal, project_id, **changes))


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> Response:
    _service(request).delete(principal, project_id)
    return Response(status_code=204)


@router.patch("/projects/{project_id}/visibility", response_model=ProjectResponse)
def update_visibility(
    request: Request,
    project_id: int,
    body: VisibilityUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    project = _service(request).update_visibility(principal, project_id, body.visibility.value)
    return ProjectResponse.from_project(project)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/members", response_model=list[MemberResponse])
def list_members(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[MemberResponse]:
    return [MemberResponse(**m) for m in _service(request).members(principal, project_id)]


@router.post("/projects/{project_id}/members", response_model=ProjectResponse, status_code=201)
def add_member(
    request: Request,
    project_id: int,
    body: MemberAdd,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    project = _service(request).add_member(principal, project_id, body.user_id)
    return ProjectResponse.from_project(project)


@router.delete("/projects/{project_id}/members/{user_id}", response_model=ProjectResponse)
def remove_member(
    request: Request,
    project_id: int,
    user_id: int,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    """Remove a member. Tasks assigned to them in this project become unassigned."""
    project = _service(request).remove_member(principal, project_id, user_id)
    return ProjectResponse.from_project(project)
