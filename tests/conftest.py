"""
Shared test fixtures for the scopegate test suite.

Key fixtures:
- make_token: A factory function to generate JWT tokens with any claims
- token_service / policy_service / user_directory: in-memory stand-ins for
  the OAuth2 provider, the policy service and the user directory
- registry / controller: the core wired to those stand-ins
- initialized: a controller whose registry holds the sample scopes, plus the
  root token it returned

Testing approach:
- test_routetree.py, test_models.py: pure unit tests, no fixtures needed
- test_registry.py, test_access.py: the core against the in-memory services
- test_hydra.py, test_keto.py: HTTP clients against httpx.MockTransport
- test_server.py: full HTTP round trips through the Starlette app
"""

import datetime
from dataclasses import dataclass

import jwt
import pytest

from scopegate.access import AccessController
from scopegate.collaborators import ClientCredentials, RoleRecord
from scopegate.config import settings
from scopegate.errors import CollaboratorUnavailable, InvalidToken, RoleNotFound
from scopegate.registry import ScopeRegistry
from scopegate.users import InMemoryUserDirectory

TEST_SECRET = settings.jwt_secret_key
TEST_ALGORITHM = settings.jwt_algorithm

SAMPLE_SCOPES = [
    {"name": "roles.read", "method": "GET", "uri": "/roles", "description": "List roles"},
    {"name": "roles.write", "method": "POST", "uri": "/roles", "description": "Create roles"},
    {"name": "users.read", "method": "GET", "uri": "/users/:id", "description": "Read a user"},
    {"name": "files.read", "method": "GET", "uri": "/files/*", "description": "Read any file"},
]


# ---------------------------------------------------------------------------
# Token factory fixture
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token():
    """
    Factory fixture to generate JWT tokens for testing.

    Usage in tests:
        def test_something(make_token):
            token = make_token(sub="alice")
    """

    def _make_token(
        sub: str = "test-user",
        secret: str = TEST_SECRET,
        algorithm: str = TEST_ALGORITHM,
        exp_hours: float = 1.0,
        include_exp: bool = True,
        include_sub: bool = True,
    ) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        payload: dict = {"iat": now}

        if include_sub:
            payload["sub"] = sub

        if include_exp:
            payload["exp"] = now + datetime.timedelta(hours=exp_hours)

        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make_token


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------
class FakeTokenService:
    """TokenIssuer + TokenIntrospector over a token -> subject map."""

    def __init__(self):
        self.subjects: dict[str, str] = {}
        self.registered: list[str] | None = None
        self.introspected: list[str] = []
        self.unavailable = False

    async def register_client(self, scope_names):
        if self.unavailable:
            raise CollaboratorUnavailable("hydra", "connection refused")
        self.registered = list(scope_names)
        return ClientCredentials(client_id="scopegate-root", client_secret="s3cret")

    async def introspect(self, token):
        self.introspected.append(token)
        if self.unavailable:
            raise CollaboratorUnavailable("hydra", "connection refused")
        try:
            return self.subjects[token]
        except KeyError:
            raise InvalidToken() from None


@dataclass
class PolicyCall:
    subject: str
    scope: str


class FakePolicyService:
    """PolicyService granting a scope to every member of a role holding it."""

    def __init__(self):
        self.roles: dict[str, RoleRecord] = {}
        self.checks: list[PolicyCall] = []
        self.failing_scopes: set[str] = set()

    async def create_role(self, role_id, description, members, scopes):
        self.roles[role_id] = RoleRecord(role_id, description, list(members), list(scopes))

    async def update_role(self, role_id, new_id, description, members, scopes):
        await self.delete_role(role_id)
        await self.create_role(new_id, description, members, scopes)

    async def delete_role(self, role_id):
        if role_id not in self.roles:
            raise RoleNotFound(role_id)
        del self.roles[role_id]

    async def get_role(self, role_id):
        try:
            return self.roles[role_id]
        except KeyError:
            raise RoleNotFound(role_id) from None

    async def list_roles(self):
        return list(self.roles.values())

    async def list_roles_for_subject(self, subject):
        return [role.id for role in self.roles.values() if subject in role.members]

    async def is_authorized(self, subject, scope_name):
        self.checks.append(PolicyCall(subject, scope_name))
        if scope_name in self.failing_scopes:
            raise CollaboratorUnavailable("keto", "connection refused")
        return any(
            subject in role.members and scope_name in role.scopes for role in self.roles.values()
        )


@pytest.fixture
def token_service():
    return FakeTokenService()


@pytest.fixture
def policy_service():
    return FakePolicyService()


@pytest.fixture
def user_directory():
    return InMemoryUserDirectory(["alice", "bob"])


@pytest.fixture
def registry(token_service, policy_service):
    return ScopeRegistry(issuer=token_service, policy=policy_service)


@pytest.fixture
def controller(registry, token_service, policy_service, user_directory):
    return AccessController(
        registry,
        introspector=token_service,
        policy=policy_service,
        users=user_directory,
        min_token_length=10,
    )


@pytest.fixture
async def initialized(controller):
    """(controller, root_token) with SAMPLE_SCOPES registered."""
    root_token = await controller.registry.initialize_scopes(SAMPLE_SCOPES)
    return controller, root_token
