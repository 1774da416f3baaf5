"""
Client for the policy service (ORY Keto, ACP "exact" flavor).

Terminology:
- scopegate role: unique name, description, members and scopes
- Keto role: an ID and a list of members (subjects)
- Keto policy: description, resources, actions and subjects

Each scopegate role is stored as a Keto role plus one Keto policy whose
only subject is that Keto role. The policy's resources are the role's scope
names. Keto actions are not used: scope names are already unique, so every
policy carries the single action "perform". Policies owned by scopegate are
recognized by their ID prefix.
"""

import logging
from typing import Any

import httpx

from scopegate.collaborators import RoleRecord
from scopegate.config import settings
from scopegate.errors import CollaboratorUnavailable, RoleNotFound

logger = logging.getLogger("scopegate.keto")

ENGINE_PATH = "/engines/acp/ory/exact"
ROLE_POLICY_PREFIX = "scopegate.role."
STUB_ACTION = "perform"
# Keto has no cursor API here; a single page this large covers every role.
PAGE_LIMIT = 500


class KetoClient:
    """
    PolicyService backed by Keto's REST API.

    Usage::

        keto = KetoClient("http://keto:4466")
        await keto.create_role("editors", "Can edit", ["user-1"], ["roles.write"])
        allowed = await keto.is_authorized("user-1", "roles.write")
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._http = client or httpx.AsyncClient(
            base_url=(url or settings.keto_url).rstrip("/"),
            timeout=timeout or settings.http_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, ENGINE_PATH + path, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable("keto", f"{method} {path} failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, action: str, role_id: str | None = None) -> None:
        if response.status_code == 404 and role_id is not None:
            raise RoleNotFound(role_id)
        if response.is_error:
            raise CollaboratorUnavailable(
                "keto", f"error {action} (status {response.status_code})"
            )

    @staticmethod
    def _json(response: httpx.Response, action: str, expected: type = dict) -> Any:
        try:
            data = response.json()
        except ValueError as e:
            raise CollaboratorUnavailable("keto", f"invalid JSON while {action}") from e
        if not isinstance(data, expected):
            raise CollaboratorUnavailable("keto", f"unexpected response while {action}")
        return data

    @classmethod
    def _records(cls, response: httpx.Response, action: str) -> list[dict[str, Any]]:
        records = cls._json(response, action, list)
        if not all(isinstance(r, dict) and isinstance(r.get("id"), str) for r in records):
            raise CollaboratorUnavailable("keto", f"unexpected response while {action}")
        return records

    async def create_role(
        self, role_id: str, description: str, members: list[str], scopes: list[str]
    ) -> None:
        response = await self._request("PUT", "/roles", json={"id": role_id, "members": members})
        self._check(response, f"creating role '{role_id}'")

        response = await self._request(
            "PUT",
            "/policies",
            json={
                "id": ROLE_POLICY_PREFIX + role_id,
                "description": description,
                "subjects": [role_id],
                "resources": scopes,
                "actions": [STUB_ACTION],
                "effect": "allow",
            },
        )
        self._check(response, f"creating policy for role '{role_id}'")

        logger.info("Created policy %s%s for role %s", ROLE_POLICY_PREFIX, role_id, role_id)

    async def update_role(
        self,
        role_id: str,
        new_id: str,
        description: str,
        members: list[str],
        scopes: list[str],
    ) -> None:
        """
        Replace the role stored under `role_id` (which may be renamed).

        Keto has no transactions: the old role is deleted before the new one
        is created, so a failed create leaves the role deleted.
        """
        await self.delete_role(role_id)
        await self.create_role(new_id, description, members, scopes)

    async def delete_role(self, role_id: str) -> None:
        response = await self._request("DELETE", f"/roles/{role_id}")
        self._check(response, f"deleting role '{role_id}'", role_id)

        response = await self._request("DELETE", f"/policies/{ROLE_POLICY_PREFIX}{role_id}")
        self._check(response, f"deleting policy for role '{role_id}'", role_id)

        logger.info("Deleted policy for role %s", role_id)

    async def _get_role_members(self, role_id: str) -> list[str]:
        response = await self._request("GET", f"/roles/{role_id}")
        self._check(response, f"fetching role '{role_id}'", role_id)
        return self._json(response, f"fetching role '{role_id}'").get("members") or []

    async def get_role(self, role_id: str) -> RoleRecord:
        members = await self._get_role_members(role_id)

        response = await self._request("GET", f"/policies/{ROLE_POLICY_PREFIX}{role_id}")
        self._check(response, f"fetching policy for role '{role_id}'", role_id)
        policy = self._json(response, f"fetching policy for role '{role_id}'")

        return RoleRecord(
            id=role_id,
            description=policy.get("description", ""),
            members=members,
            scopes=policy.get("resources") or [],
        )

    async def list_roles(self) -> list[RoleRecord]:
        response = await self._request("GET", "/policies", params={"limit": PAGE_LIMIT})
        self._check(response, "fetching role policies")

        roles = []
        for policy in self._records(response, "fetching role policies"):
            policy_id = policy["id"]
            if not policy_id.startswith(ROLE_POLICY_PREFIX):
                continue

            role_id = policy_id[len(ROLE_POLICY_PREFIX):]
            roles.append(
                RoleRecord(
                    id=role_id,
                    description=policy.get("description", ""),
                    members=await self._get_role_members(role_id),
                    scopes=policy.get("resources") or [],
                )
            )

        return roles

    async def list_roles_for_subject(self, subject: str) -> list[str]:
        action = f"fetching roles for subject '{subject}'"
        response = await self._request(
            "GET", "/roles", params={"member": subject, "limit": PAGE_LIMIT}
        )
        self._check(response, action)
        return [role["id"] for role in self._records(response, action)]

    async def is_authorized(self, subject: str, scope_name: str) -> bool:
        logger.debug("Authorizing subject %s on scope %s", subject, scope_name)

        response = await self._request(
            "POST",
            "/allowed",
            json={"subject": subject, "action": STUB_ACTION, "resource": scope_name},
        )
        # Keto answers a denied check with 403 and {"allowed": false}.
        if response.status_code == 403:
            return False
        self._check(response, "authorizing subject")

        return bool(self._json(response, "authorizing subject").get("allowed"))
