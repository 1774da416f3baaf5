"""
Authorization decisions and role management.

Every authorization request is an HTTP method and a URI, plus the caller's
bearer token. The decision runs in this order:

1. Validate the method and URI                       -> deny: invalid_request
2. Registry never initialized, or root token          -> allow
3. Look up the scopes whose patterns match the action
4. No matching scope: the route is public             -> allow
5. Token shorter than `min_token_length`              -> deny: invalid_token
6. Introspect the token to find its subject           -> deny: invalid_token /
                                                         introspection_failed
7. Ask the policy service about each matched scope; the first grant allows
   the whole request (scopes are OR-ed, in tree order)
8. No grant                                           -> deny: unauthorized /
                                                         policy_unavailable

Collaborator failures always end in a deny with a reason of their own, so
they can be told apart from a plain "not allowed" and are never mistaken
for a grant.

Every decision is logged as one structured record (see `auth_data` in the
server's JSON log formatter).
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scopegate.collaborators import PolicyService, RoleRecord, TokenIntrospector, UserDirectory
from scopegate.config import settings
from scopegate.errors import CollaboratorUnavailable, InvalidToken, ValidationError
from scopegate.models import Action, Role, parse
from scopegate.registry import ADMIN_DESCRIPTION, ADMIN_ROLE, ScopeRegistry

logger = logging.getLogger("scopegate.access")


class DenyReason(str, Enum):
    INVALID_REQUEST = "invalid_request"
    INVALID_TOKEN = "invalid_token"
    INTROSPECTION_FAILED = "introspection_failed"
    UNAUTHORIZED = "unauthorized"
    POLICY_UNAVAILABLE = "policy_unavailable"


@dataclass(frozen=True)
class Decision:
    """Outcome of one authorization request."""

    allowed: bool
    reason: DenyReason | None = None
    detail: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason, detail: str = "") -> "Decision":
        return cls(allowed=False, reason=reason, detail=detail)


class AccessController:
    """
    Decides whether a token may perform an action, and manages roles.

    Usage::

        controller = AccessController(registry, introspector=hydra, policy=keto, users=directory)
        decision = await controller.authorize(token, "POST", "/roles")
        if not decision.allowed:
            ...
    """

    def __init__(
        self,
        registry: ScopeRegistry,
        *,
        introspector: TokenIntrospector,
        policy: PolicyService,
        users: UserDirectory,
        min_token_length: int | None = None,
    ):
        self.registry = registry
        self._introspector = introspector
        self._policy = policy
        self._users = users
        self._min_token_length = (
            min_token_length if min_token_length is not None else settings.min_token_length
        )

    # -----------------------------------------------------------------------
    # Authorization
    # -----------------------------------------------------------------------

    async def authorize(self, token: str, method: str, uri: str) -> Decision:
        request_id = str(uuid.uuid4())[:8]
        decision = await self._decide(token, method, uri, request_id)

        log_data = {
            "request_id": request_id,
            "method": method,
            "uri": uri,
            "decision": "allowed" if decision.allowed else "denied",
        }
        if decision.reason is not None:
            log_data["reason"] = decision.reason.value
        if decision.detail:
            log_data["detail"] = decision.detail

        if decision.allowed:
            logger.info("Action authorized", extra={"auth_data": log_data})
        else:
            logger.warning("Action denied", extra={"auth_data": log_data})

        return decision

    async def _decide(self, token: str, method: str, uri: str, request_id: str) -> Decision:
        try:
            action = parse(Action, {"method": method, "uri": uri})
        except ValidationError as e:
            return Decision.deny(DenyReason.INVALID_REQUEST, e.message)

        if not self.registry.initialized:
            logger.warning(
                "Scopes haven't been initialized, all requests will be allowed",
                extra={"auth_data": {"request_id": request_id}},
            )
            return Decision.allow()

        if self.registry.is_root_token(token):
            return Decision.allow()

        scopes = self.registry.matching_scopes(action.method, action.uri)
        logger.debug("Found %d scopes for %s %s", len(scopes), action.method, action.uri)
        if not scopes:
            # Routes not covered by any scope are public.
            return Decision.allow()

        if len(token) < self._min_token_length:
            return Decision.deny(DenyReason.INVALID_TOKEN, "token too short")

        try:
            subject = await self._introspector.introspect(token)
        except InvalidToken as e:
            return Decision.deny(DenyReason.INVALID_TOKEN, e.message)
        except CollaboratorUnavailable as e:
            logger.error("Token introspection failed: %s", e.message)
            return Decision.deny(DenyReason.INTROSPECTION_FAILED)

        failed = False
        for scope in scopes:
            try:
                if await self._policy.is_authorized(subject, scope.name):
                    return Decision.allow()
            except CollaboratorUnavailable as e:
                logger.error("Policy check for scope %s failed: %s", scope.name, e.message)
                failed = True

        if failed:
            return Decision.deny(DenyReason.POLICY_UNAVAILABLE)
        return Decision.deny(DenyReason.UNAUTHORIZED)

    # -----------------------------------------------------------------------
    # Roles
    # -----------------------------------------------------------------------

    async def validate_role(self, data: Role | dict[str, Any]) -> Role:
        """
        Parse a role and check that its scopes and members exist.

        Raises:
            ValidationError: If the shape is wrong or a scope doesn't exist
            UnknownUser: If a member doesn't resolve in the user directory
        """
        role = parse(Role, data)

        for member in role.members:
            await self._users.find_user_by_id(member)

        for scope in role.scopes:
            if not self.registry.has_scope(scope):
                raise ValidationError(f"scope {scope} doesn't exist")

        return role

    async def create_role(self, data: Role | dict[str, Any]) -> Role:
        role = await self.validate_role(data)
        await self._policy.create_role(role.id, role.description, role.members, role.scopes)
        return role

    async def update_role(self, role_id: str, data: Role | dict[str, Any]) -> Role:
        """
        Replace a role. The admin role keeps its name, description and full
        scope list; only its members can change.
        """
        role = await self.validate_role(data)

        if role_id == ADMIN_ROLE:
            role = Role(
                id=ADMIN_ROLE,
                description=ADMIN_DESCRIPTION,
                members=role.members,
                scopes=self.registry.scope_names(),
            )

        await self._policy.update_role(
            role_id, role.id, role.description, role.members, role.scopes
        )
        return role

    async def delete_role(self, role_id: str) -> None:
        if role_id == ADMIN_ROLE:
            raise ValidationError("admin role cannot be deleted")
        await self._policy.delete_role(role_id)

    async def list_roles(self) -> list[Role]:
        return [_to_role(record) for record in await self._policy.list_roles()]

    async def get_role(self, role_id: str) -> Role:
        return _to_role(await self._policy.get_role(role_id))

    async def roles_for_token(self, token: str) -> list[str]:
        """
        Role IDs held by the token's subject.

        The root token holds the admin role. Policy-service failures are
        logged and yield no roles.

        Raises:
            InvalidToken: If the token cannot be introspected
            CollaboratorUnavailable: If the introspector fails
        """
        if self.registry.is_root_token(token):
            return [ADMIN_ROLE]

        subject = await self._introspector.introspect(token)
        try:
            return await self._policy.list_roles_for_subject(subject)
        except CollaboratorUnavailable as e:
            logger.error("Fetching roles for subject %s failed: %s", subject, e.message)
            return []


def _to_role(record: RoleRecord) -> Role:
    return Role(
        id=record.id,
        description=record.description,
        members=record.members,
        scopes=record.scopes,
    )
