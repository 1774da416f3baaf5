"""
Contracts scopegate needs from the services around it.

Token issuance, token introspection, policy evaluation and the user
directory all live outside this service. The registry and the access
controller only talk to them through these protocols, so any client that
has the right methods can be plugged in (the HTTP clients in `hydra` and
`keto`, the local JWT verifier in `auth`, or fakes in tests).

Every method may raise `CollaboratorUnavailable` when the service cannot be
reached; introspection additionally raises `InvalidToken`.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth2 client registered with the token issuer."""

    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class RoleRecord:
    """A role as stored by the policy service."""

    id: str
    description: str
    members: list[str]
    scopes: list[str]


@runtime_checkable
class TokenIssuer(Protocol):
    async def register_client(self, scope_names: list[str]) -> ClientCredentials: ...


@runtime_checkable
class TokenIntrospector(Protocol):
    async def introspect(self, token: str) -> str:
        """Return the subject the token was issued to."""
        ...


@runtime_checkable
class PolicyService(Protocol):
    async def create_role(
        self, role_id: str, description: str, members: list[str], scopes: list[str]
    ) -> None: ...

    async def update_role(
        self,
        role_id: str,
        new_id: str,
        description: str,
        members: list[str],
        scopes: list[str],
    ) -> None: ...

    async def delete_role(self, role_id: str) -> None: ...

    async def get_role(self, role_id: str) -> RoleRecord: ...

    async def list_roles(self) -> list[RoleRecord]: ...

    async def list_roles_for_subject(self, subject: str) -> list[str]: ...

    async def is_authorized(self, subject: str, scope_name: str) -> bool: ...


@runtime_checkable
class UserDirectory(Protocol):
    async def find_user_by_id(self, user_id: str) -> object:
        """Return the user record, or raise `UnknownUser`."""
        ...
