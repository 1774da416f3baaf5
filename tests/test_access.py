"""
Tests for authorization decisions and role management (scopegate/access.py).

Each decision step is exercised on its own, with the in-memory token
service and policy service from conftest recording what was asked of them:

1. request validation
2. bootstrap mode and root-token bypass
3-4. scope lookup, public routes
5. short tokens
6. introspection
7-8. policy checks OR-ed across matching scopes
"""

import logging

import httpx
import pytest

from conftest import SAMPLE_SCOPES
from scopegate.access import AccessController, Decision, DenyReason
from scopegate.errors import InvalidToken, RoleNotFound, UnknownUser, ValidationError
from scopegate.hydra import HydraClient
from scopegate.keto import KetoClient
from scopegate.registry import ADMIN_DESCRIPTION, ADMIN_ROLE

VALID_TOKEN = "alice-access-token"


class TestAuthorize:
    # ----- Request validation -----

    async def test_invalid_method_is_denied(self, initialized):
        controller, root_token = initialized

        decision = await controller.authorize(root_token, "FETCH", "/roles")

        assert decision == Decision.deny(DenyReason.INVALID_REQUEST, "method: scope: invalid HTTP method")

    async def test_invalid_uri_is_denied(self, initialized):
        controller, root_token = initialized

        decision = await controller.authorize(root_token, "GET", "roles")

        assert not decision.allowed
        assert decision.reason is DenyReason.INVALID_REQUEST

    # ----- Bootstrap and root token -----

    async def test_everything_allowed_before_initialization(self, controller, token_service):
        decision = await controller.authorize("", "DELETE", "/roles/admin")

        assert decision.allowed
        assert token_service.introspected == []

    async def test_root_token_bypasses_scopes(self, initialized, token_service, policy_service):
        controller, root_token = initialized

        decision = await controller.authorize(root_token, "POST", "/roles")

        assert decision.allowed
        assert token_service.introspected == []
        assert policy_service.checks == []

    # ----- Public routes -----

    async def test_unregistered_route_is_public(self, initialized, token_service):
        controller, _ = initialized

        decision = await controller.authorize("", "GET", "/public/page")

        assert decision.allowed
        assert token_service.introspected == []

    async def test_registered_path_with_other_method_is_public(self, initialized):
        controller, _ = initialized

        assert (await controller.authorize("", "DELETE", "/roles")).allowed

    # ----- Token checks -----

    async def test_short_token_is_rejected_before_introspection(self, initialized, token_service):
        controller, _ = initialized

        decision = await controller.authorize("short", "POST", "/roles")

        assert decision.reason is DenyReason.INVALID_TOKEN
        assert token_service.introspected == []

    async def test_unknown_token_is_rejected(self, initialized, token_service):
        controller, _ = initialized

        decision = await controller.authorize("valid-looking-token", "POST", "/roles")

        assert decision.reason is DenyReason.INVALID_TOKEN
        assert token_service.introspected == ["valid-looking-token"]

    async def test_introspection_outage_is_a_distinct_deny(self, initialized, token_service):
        controller, _ = initialized
        token_service.unavailable = True

        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")

        assert not decision.allowed
        assert decision.reason is DenyReason.INTROSPECTION_FAILED

    # ----- Policy checks -----

    async def test_subject_without_grant_is_unauthorized(self, initialized, token_service):
        controller, _ = initialized
        token_service.subjects[VALID_TOKEN] = "alice"

        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")

        assert decision.reason is DenyReason.UNAUTHORIZED

    async def test_subject_with_grant_is_allowed(self, initialized, token_service, policy_service):
        controller, _ = initialized
        token_service.subjects[VALID_TOKEN] = "alice"
        await policy_service.create_role("editors", "", ["alice"], ["roles.write"])

        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")

        assert decision.allowed

    async def test_any_matching_scope_grants_access(
        self, controller, token_service, policy_service
    ):
        await controller.registry.initialize_scopes(
            [
                {"name": "foo.all", "method": "GET", "uri": "/foo/*"},
                {"name": "foo.baz", "method": "GET", "uri": "/foo/bar/baz"},
                {"name": "foo.bar", "method": "GET", "uri": "/foo/bar/*"},
            ]
        )
        token_service.subjects[VALID_TOKEN] = "alice"
        await policy_service.create_role("bar-readers", "", ["alice"], ["foo.bar"])

        decision = await controller.authorize(VALID_TOKEN, "GET", "/foo/bar/baz")

        assert decision.allowed
        assert {call.scope for call in policy_service.checks} <= {"foo.all", "foo.baz", "foo.bar"}
        assert policy_service.checks[-1].scope == "foo.bar"

    async def test_first_grant_stops_the_checks(self, controller, token_service, policy_service):
        await controller.registry.initialize_scopes(
            [
                {"name": "foo.all", "method": "GET", "uri": "/foo/*"},
                {"name": "foo.baz", "method": "GET", "uri": "/foo/baz"},
            ]
        )
        token_service.subjects[VALID_TOKEN] = "alice"
        await policy_service.create_role("all", "", ["alice"], ["foo.all", "foo.baz"])

        assert (await controller.authorize(VALID_TOKEN, "GET", "/foo/baz")).allowed
        assert len(policy_service.checks) == 1

    async def test_policy_outage_is_never_an_allow(self, initialized, token_service, policy_service):
        controller, _ = initialized
        token_service.subjects[VALID_TOKEN] = "alice"
        policy_service.failing_scopes.add("roles.write")

        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")

        assert decision.reason is DenyReason.POLICY_UNAVAILABLE

    async def test_decisions_are_logged_with_auth_data(self, initialized, caplog):
        controller, _ = initialized

        with caplog.at_level(logging.INFO, logger="scopegate.access"):
            await controller.authorize("short", "POST", "/roles")

        record = next(r for r in caplog.records if r.getMessage() == "Action denied")
        assert record.auth_data["decision"] == "denied"
        assert record.auth_data["reason"] == "invalid_token"
        assert record.auth_data["uri"] == "/roles"


def gateway_page(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="<html>gateway</html>")


class TestGarbledCollaboratorResponses:
    """Real clients behind a proxy that answers 200 with an HTML page."""

    async def test_garbled_introspection_is_introspection_failed(
        self, registry, policy_service, user_directory
    ):
        await registry.initialize_scopes(SAMPLE_SCOPES)
        hydra = HydraClient(
            client_id="scopegate-root",
            callback_url="http://app/callback",
            client=httpx.AsyncClient(transport=httpx.MockTransport(gateway_page), base_url="http://hydra"),
        )
        controller = AccessController(
            registry, introspector=hydra, policy=policy_service, users=user_directory
        )

        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")

        assert decision.reason is DenyReason.INTROSPECTION_FAILED

    async def test_garbled_policy_check_is_policy_unavailable(
        self, registry, token_service, user_directory
    ):
        await registry.initialize_scopes(SAMPLE_SCOPES)
        token_service.subjects[VALID_TOKEN] = "alice"
        keto = KetoClient(
            client=httpx.AsyncClient(transport=httpx.MockTransport(gateway_page), base_url="http://keto")
        )
        controller = AccessController(
            registry, introspector=token_service, policy=keto, users=user_directory
        )

        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")

        assert decision.reason is DenyReason.POLICY_UNAVAILABLE


class TestRolesEndToEnd:
    """POST /roles guarded by roles.write, from unknown token to granted subject."""

    async def test_scenario(self, controller, token_service):
        await controller.registry.initialize_scopes(
            [{"name": "roles.write", "method": "POST", "uri": "/roles"}]
        )

        decision = await controller.authorize("not-introspectable", "POST", "/roles")
        assert decision.reason is DenyReason.INVALID_TOKEN

        token_service.subjects[VALID_TOKEN] = "alice"
        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")
        assert decision.reason is DenyReason.UNAUTHORIZED

        await controller.create_role({"name": "editors", "members": ["alice"], "scopes": ["roles.write"]})
        decision = await controller.authorize(VALID_TOKEN, "POST", "/roles")
        assert decision.allowed


class TestRoles:
    async def test_create_role_forwards_validated_role(self, initialized, policy_service):
        controller, _ = initialized

        role = await controller.create_role(
            {"name": "Editors", "description": "Edit", "members": ["alice", "alice"], "scopes": ["roles.write"]}
        )

        assert role.id == "editors"
        stored = policy_service.roles["editors"]
        assert stored.members == ["alice"]
        assert stored.scopes == ["roles.write"]
        assert stored.description == "Edit"

    async def test_unknown_scope_is_rejected(self, initialized, policy_service):
        controller, _ = initialized

        with pytest.raises(ValidationError, match="scope nope.scope doesn't exist"):
            await controller.create_role({"name": "editors", "scopes": ["nope.scope"]})

        assert "editors" not in policy_service.roles

    async def test_unknown_member_is_rejected(self, initialized):
        controller, _ = initialized

        with pytest.raises(UnknownUser):
            await controller.create_role({"name": "editors", "members": ["mallory"]})

    async def test_member_added_to_directory_is_accepted(self, initialized, user_directory):
        controller, _ = initialized
        user_directory.add("carol")

        role = await controller.create_role({"name": "editors", "members": ["carol"]})

        assert role.members == ["carol"]

    async def test_update_role_can_rename(self, initialized, policy_service):
        controller, _ = initialized
        await controller.create_role({"name": "editors", "members": ["alice"]})

        await controller.update_role("editors", {"name": "writers", "members": ["bob"]})

        assert "editors" not in policy_service.roles
        assert policy_service.roles["writers"].members == ["bob"]

    async def test_admin_role_only_changes_members(self, initialized, policy_service):
        controller, _ = initialized

        role = await controller.update_role(
            ADMIN_ROLE, {"name": "superusers", "description": "x", "members": ["bob"], "scopes": []}
        )

        assert role.id == ADMIN_ROLE
        admin = policy_service.roles[ADMIN_ROLE]
        assert admin.members == ["bob"]
        assert admin.description == ADMIN_DESCRIPTION
        assert admin.scopes == controller.registry.scope_names()

    async def test_admin_role_cannot_be_deleted(self, initialized, policy_service):
        controller, _ = initialized

        with pytest.raises(ValidationError, match="admin role cannot be deleted"):
            await controller.delete_role(ADMIN_ROLE)

        assert ADMIN_ROLE in policy_service.roles

    async def test_delete_missing_role(self, initialized):
        controller, _ = initialized

        with pytest.raises(RoleNotFound):
            await controller.delete_role("ghosts")

    async def test_get_and_list_roles(self, initialized):
        controller, _ = initialized
        await controller.create_role({"name": "editors", "members": ["alice"], "scopes": ["roles.read"]})

        role = await controller.get_role("editors")
        assert role.to_json() == {
            "name": "editors",
            "description": "",
            "members": ["alice"],
            "scopes": ["roles.read"],
        }
        assert sorted(r.id for r in await controller.list_roles()) == [ADMIN_ROLE, "editors"]

    async def test_roles_for_root_token(self, initialized):
        controller, root_token = initialized

        assert await controller.roles_for_token(root_token) == [ADMIN_ROLE]

    async def test_roles_for_subject(self, initialized, token_service):
        controller, _ = initialized
        token_service.subjects[VALID_TOKEN] = "alice"
        await controller.create_role({"name": "editors", "members": ["alice"]})

        assert await controller.roles_for_token(VALID_TOKEN) == ["editors"]

    async def test_roles_for_unknown_token(self, initialized):
        controller, _ = initialized

        with pytest.raises(InvalidToken):
            await controller.roles_for_token("unknown-token")

    async def test_roles_for_token_before_initialization_introspects(
        self, controller, token_service
    ):
        with pytest.raises(InvalidToken):
            await controller.roles_for_token("any-token-at-all")

        assert token_service.introspected == ["any-token-at-all"]
