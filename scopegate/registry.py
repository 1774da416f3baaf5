"""
Scope registry: the validated scopes and the route tree built from them.

Lifecycle:

    uninitialized --initialize_scopes()--> ready
          ^                                  |
          +------------- reset() ------------+   (recovery only)

`initialize_scopes` builds the whole state locally, registers the scopes
with the OAuth2 provider, provisions the admin role, and only then
publishes the state with a single reference swap. Readers (`get_scopes`,
`matching_scopes`) grab the current state once and never lock, so they
cannot observe a half-built tree.

The root token is assigned once per process. `reset()` does not clear it,
so once initialization has succeeded it can never succeed again.
"""

import asyncio
import logging
import secrets
import string
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from scopegate.collaborators import PolicyService, TokenIssuer
from scopegate.config import settings
from scopegate.errors import AlreadyInitialized, DuplicateScope, NotInitialized, RoleNotFound
from scopegate.models import Scope, parse
from scopegate.routetree import ScopeRouteTree

logger = logging.getLogger("scopegate.registry")

ADMIN_ROLE = "admin"
ADMIN_DESCRIPTION = "Special policy for admin to do anything on all scopes"

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def random_token(length: int) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class RegistryState:
    """
    Immutable snapshot of the registered scopes.

    Attributes:
        scopes: Scopes in registration order; a scope's index is its position
        name_index: Scope name -> index into `scopes`
        tree: Route tree whose terminal nodes carry indices into `scopes`
    """

    scopes: tuple[Scope, ...] = ()
    name_index: Mapping[str, int] = field(default_factory=dict)
    tree: ScopeRouteTree = field(default_factory=ScopeRouteTree)

    @classmethod
    def build(cls, scopes: Iterable[Scope | Mapping[str, Any]]) -> "RegistryState":
        """
        Validate `scopes` in order and index them into a fresh tree.

        Raises:
            ValidationError: On the first invalid scope
            DuplicateScope: If two scopes share a name
        """
        registered: list[Scope] = []
        name_index: dict[str, int] = {}
        tree = ScopeRouteTree()

        for data in scopes:
            scope = parse(Scope, data)
            if scope.name in name_index:
                raise DuplicateScope(scope.name)

            index = len(registered)
            registered.append(scope)
            name_index[scope.name] = index
            tree.add_route(scope.method, scope.uri, index)

        return cls(scopes=tuple(registered), name_index=name_index, tree=tree)


class ScopeRegistry:
    """
    Owns the registry state and the root token.

    Usage::

        registry = ScopeRegistry(issuer=hydra, policy=keto)
        root_token = await registry.initialize_scopes([
            {"name": "roles.write", "method": "POST", "uri": "/roles"},
        ])
        registry.matching_scopes("POST", "/roles")   # [Scope(name="roles.write", ...)]
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        policy: PolicyService,
        *,
        root_token_length: int | None = None,
    ):
        self._issuer = issuer
        self._policy = policy
        self._root_token_length = root_token_length or settings.root_token_length
        self._state = RegistryState()
        self._root_token: str | None = None
        self._publish_lock = threading.Lock()
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._root_token is not None

    @property
    def state(self) -> RegistryState:
        return self._state

    async def initialize_scopes(self, scopes: Iterable[Scope | Mapping[str, Any]]) -> str:
        """
        Register all scopes and return the root token.

        The token is returned exactly once and cannot be retrieved later.
        On failure nothing is published; call `reset()` before retrying.

        Raises:
            AlreadyInitialized: If a root token has already been minted
            ValidationError: If any scope is invalid or duplicated
            CollaboratorUnavailable: If the OAuth2 provider or the policy
                                     service fails
        """
        async with self._init_lock:
            if self._root_token is not None:
                raise AlreadyInitialized()

            state = RegistryState.build(scopes)
            scope_names = [scope.name for scope in state.scopes]

            await self._issuer.register_client(scope_names)
            await self._provision_admin_role(scope_names)

            token = random_token(self._root_token_length)
            with self._publish_lock:
                self._state = state
                self._root_token = token

        logger.info("Initialized %d scopes", len(state.scopes))
        return token

    async def _provision_admin_role(self, scope_names: list[str]) -> None:
        try:
            await self._policy.delete_role(ADMIN_ROLE)
        except RoleNotFound:
            pass

        await self._policy.create_role(ADMIN_ROLE, ADMIN_DESCRIPTION, [], scope_names)

    def get_scopes(self) -> list[Scope]:
        if self._root_token is None:
            raise NotInitialized()
        return list(self._state.scopes)

    def reset(self) -> None:
        """Drop all scopes and the tree. The root token is kept."""
        with self._publish_lock:
            self._state = RegistryState()
        logger.info("Registry state cleared")

    def has_scope(self, name: str) -> bool:
        return name in self._state.name_index

    def scope_names(self) -> list[str]:
        return [scope.name for scope in self._state.scopes]

    def matching_scopes(self, method: str, uri: str) -> list[Scope]:
        """Scopes whose pattern matches (method, uri), in tree order."""
        state = self._state
        return [state.scopes[index] for index in state.tree.get_matching_scopes(method, uri)]

    def is_root_token(self, token: str) -> bool:
        root_token = self._root_token
        if root_token is None:
            return False
        return secrets.compare_digest(token.encode(), root_token.encode())
