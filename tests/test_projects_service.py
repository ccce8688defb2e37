"""
tests/test_projects_service.py -- Integration tests for ProjectService and TaskService.

Every use case goes through the shared AccessPolicy; these tests pin the
observable outcome (404 vs 403 vs success) and that cached reads never
outlive the write that changed them.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from auth.models import Principal
from conftest import STRONG_PASSWORD, create_admin
from core.errors import AuthorizationFailure, NotFound, ValidationFailure


def _user(svc: SimpleNamespace, name: str) -> Principal:
    profile = svc.flows.register(f"{name}@ex.com", STRONG_PASSWORD, name.title(), "Tester")
    return Principal(id=profile["id"], email=profile["email"], role="user")


@pytest.fixture
def team(services: SimpleNamespace) -> SimpleNamespace:
    """u1 owns a team project with member u2; u3 is an outsider."""
    u1, u2, u3 = (_user(services, n) for n in ("uone", "utwo", "uthree"))
    admin = Principal.from_user(services.users.find_by_id(create_admin(services)))
    project = services.projects.create(u1, name="Launch", visibility="team", members=[u2.id])
    return SimpleNamespace(svc=services, u1=u1, u2=u2, u3=u3, admin=admin, project=project)


class TestProjects:
    def test_create_sets_owner_and_members(self, team: SimpleNamespace) -> None:
        assert team.project.owner_id == team.u1.id
        assert team.project.members == [team.u2.id]
        assert team.project.status == "planning"

    def test_owner_is_not_stored_as_member(self, services: SimpleNamespace) -> None:
        u1 = _user(services, "solo")
        project = services.projects.create(u1, name="Solo", members=[u1.id])
        assert project.members == []

    def test_create_validates_choices(self, services: SimpleNamespace) -> None:
        u1 = _user(services, "val")
        with pytest.raises(ValidationFailure):
            services.projects.create(u1, name="X", visibility="secret")
        with pytest.raises(ValidationFailure):
            services.projects.create(u1, name="   ")

    def test_create_with_unknown_member(self, services: SimpleNamespace) -> None:
        u1 = _user(services, "ghosts")
        with pytest.raises(NotFound):
            services.projects.create(u1, name="X", members=[9999])

    def test_read_access(self, team: SimpleNamespace) -> None:
        for principal in (team.u1, team.u2, team.admin):
            assert team.svc.projects.get(principal, team.project.id).name == "Launch"
        with pytest.raises(NotFound):
            team.svc.projects.get(team.u3, team.project.id)

    def test_member_cannot_modify(self, team: SimpleNamespace) -> None:
        with pytest.raises(AuthorizationFailure):
            team.svc.projects.update(team.u2, team.project.id, name="Hijacked")

    def test_outsider_modify_is_not_found(self, team: SimpleNamespace) -> None:
        with pytest.raises(NotFound):
            team.svc.projects.delete(team.u3, team.project.id)

    def test_update_is_visible_through_cache(self, team: SimpleNamespace) -> None:
        team.svc.projects.get(team.u2, team.project.id)  # warm project:{id}
        team.svc.projects.list_visible(team.u2)  # warm u2's listing
        team.svc.projects.update(team.u1, team.project.id, name="Renamed", status="active")
        assert team.svc.projects.get(team.u2, team.project.id).name == "Renamed"
        assert [p.name for p in team.svc.projects.list_visible(team.u2)] == ["Renamed"]

    def test_update_requires_a_field(self, team: SimpleNamespace) -> None:
        with pytest.raises(ValidationFailure):
            team.svc.projects.update(team.u1, team.project.id)

    def test_missing_project(self, team: SimpleNamespace) -> None:
        with pytest.raises(NotFound):
            team.svc.projects.get(team.admin, 424242)

    def test_list_visible_filters(self, team: SimpleNamespace) -> None:
        svc = team.svc
        svc.projects.create(team.u3, name="Open", visibility="public")
        svc.projects.create(team.u3, name="Hidden", visibility="private")
        names = {p.name for p in svc.projects.list_visible(team.u1)}
        assert names == {"Launch", "Open"}
        assert {p.name for p in svc.projects.list_visible(team.u1, visibility="public")} == {"Open"}
        assert {p.name for p in svc.projects.list_visible(team.admin)} == {"Launch", "Open", "Hidden"}

    def test_demoted_admin_loses_cached_listing(self, team: SimpleNamespace) -> None:
        svc = team.svc
        svc.projects.create(team.u3, name="Secret", visibility="private")
        _user(svc, "bob")
        tokens = svc.flows.login("bob@ex.com", STRONG_PASSWORD).tokens
        bob_id = svc.flows.verify(tokens.access_token).id
        svc.accounts.change_role(team.admin, bob_id, "admin")

        as_admin = svc.flows.verify(tokens.access_token)
        assert "Secret" in {p.name for p in svc.projects.list_visible(as_admin)}  # cached

        svc.accounts.change_role(team.admin, bob_id, "user")
        demoted = svc.flows.verify(tokens.access_token)
        assert demoted.is_admin is False
        assert svc.projects.list_visible(demoted) == []

    def test_visibility_change_hides_project_from_members(self, team: SimpleNamespace) -> None:
        svc = team.svc
        assert [p.id for p in svc.projects.list_visible(team.u2)] == [team.project.id]
        svc.projects.update_visibility(team.u1, team.project.id, "private")
        assert svc.projects.list_visible(team.u2) == []
        with pytest.raises(NotFound):
            svc.projects.get(team.u2, team.project.id)

    def test_public_project_appears_in_outsider_listing(self, team: SimpleNamespace) -> None:
        svc = team.svc
        assert svc.projects.list_visible(team.u3) == []
        svc.projects.update_visibility(team.u1, team.project.id, "public")
        assert [p.id for p in svc.projects.list_visible(team.u3)] == [team.project.id]

    def test_delete_removes_tasks(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u2, team.project.id, title="Write docs")
        svc.tasks.get(team.u2, task.id)  # cached
        svc.projects.delete(team.u1, team.project.id)
        with pytest.raises(NotFound):
            svc.tasks.get(team.admin, task.id)
        with pytest.raises(NotFound):
            svc.projects.get(team.admin, team.project.id)


class TestMembership:
    def test_add_member_grants_access(self, team: SimpleNamespace) -> None:
        svc = team.svc
        assert svc.projects.list_visible(team.u3) == []
        project = svc.projects.add_member(team.u1, team.project.id, team.u3.id)
        assert team.u3.id in project.members
        assert [p.id for p in svc.projects.list_visible(team.u3)] == [team.project.id]

    def test_add_existing_member_rejected(self, team: SimpleNamespace) -> None:
        with pytest.raises(ValidationFailure):
            team.svc.projects.add_member(team.u1, team.project.id, team.u2.id)
        with pytest.raises(ValidationFailure):
            team.svc.projects.add_member(team.u1, team.project.id, team.u1.id)

    def test_member_cannot_add_members(self, team: SimpleNamespace) -> None:
        with pytest.raises(AuthorizationFailure):
            team.svc.projects.add_member(team.u2, team.project.id, team.u3.id)

    def test_inactive_user_cannot_be_added(self, team: SimpleNamespace) -> None:
        team.svc.accounts.deactivate(team.admin, team.u3.id)
        with pytest.raises(ValidationFailure):
            team.svc.projects.add_member(team.u1, team.project.id, team.u3.id)

    def test_remove_member_revokes_access_and_unassigns(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u1, team.project.id, title="Ship", assignee_id=team.u2.id)
        svc.tasks.list_for_project(team.u1, team.project.id)  # cached listing
        svc.projects.remove_member(team.u1, team.project.id, team.u2.id)
        with pytest.raises(NotFound):
            svc.projects.get(team.u2, team.project.id)
        assert svc.tasks.list_for_project(team.u1, team.project.id)[0].assignee_id is None
        assert svc.tasks.get(team.u1, task.id).assignee_id is None

    def test_owner_cannot_be_removed(self, team: SimpleNamespace) -> None:
        with pytest.raises(ValidationFailure):
            team.svc.projects.remove_member(team.admin, team.project.id, team.u1.id)

    def test_members_lists_owner_first(self, team: SimpleNamespace) -> None:
        members = team.svc.projects.members(team.u2, team.project.id)
        assert [m["id"] for m in members] == [team.u1.id, team.u2.id]
        assert members[0]["is_owner"] is True
        assert all("hashed_password" not in m for m in members)


class TestTasks:
    def test_member_can_create_and_edit(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u2, team.project.id, title="Draft", priority="high")
        assert task.created_by == team.u2.id
        updated = svc.tasks.update(team.u2, task.id, status="in_progress", assignee_id=team.u1.id)
        assert updated.status == "in_progress"
        assert updated.assignee_id == team.u1.id

    def test_outsider_sees_nothing(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u1, team.project.id, title="Secret plan")
        with pytest.raises(NotFound):
            svc.tasks.get(team.u3, task.id)
        with pytest.raises(NotFound):
            svc.tasks.list_for_project(team.u3, team.project.id)
        with pytest.raises(NotFound):
            svc.tasks.create(team.u3, team.project.id, title="Intrusion")

    def test_public_project_readable_but_not_writable_by_strangers(self, team: SimpleNamespace) -> None:
        svc = team.svc
        svc.projects.update_visibility(team.u1, team.project.id, "public")
        task = svc.tasks.create(team.u1, team.project.id, title="Roadmap")
        assert svc.tasks.get(team.u3, task.id).title == "Roadmap"
        with pytest.raises(AuthorizationFailure):
            svc.tasks.update(team.u3, task.id, title="Vandalised")
        with pytest.raises(AuthorizationFailure):
            svc.tasks.delete(team.u3, task.id)

    def test_assignee_must_belong_to_project(self, team: SimpleNamespace) -> None:
        with pytest.raises(ValidationFailure):
            team.svc.tasks.create(team.u1, team.project.id, title="X", assignee_id=team.u3.id)

    def test_unassign(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u1, team.project.id, title="X", assignee_id=team.u2.id)
        assert svc.tasks.update(team.u1, task.id, unassign=True).assignee_id is None

    def test_update_is_visible_through_cache(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u1, team.project.id, title="Old title")
        svc.tasks.get(team.u2, task.id)
        svc.tasks.list_for_project(team.u2, team.project.id)
        svc.tasks.update(team.u1, task.id, title="New title")
        assert svc.tasks.get(team.u2, task.id).title == "New title"
        assert [t.title for t in svc.tasks.list_for_project(team.u2, team.project.id)] == ["New title"]

    def test_delete(self, team: SimpleNamespace) -> None:
        svc = team.svc
        task = svc.tasks.create(team.u1, team.project.id, title="Temp")
        svc.tasks.delete(team.u2, task.id)
        with pytest.raises(NotFound):
            svc.tasks.get(team.u1, task.id)
        assert svc.tasks.list_for_project(team.u1, team.project.id) == []

    def test_invalid_status_rejected(self, team: SimpleNamespace) -> None:
        with pytest.raises(ValidationFailure):
            team.svc.tasks.create(team.u1, team.project.id, title="X", status="done")
