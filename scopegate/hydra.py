"""
Client for the OAuth2 provider (ORY Hydra admin API).

scopegate uses Hydra for two things:
- registering one OAuth2 client that may request every initialized scope
  (TokenIssuer)
- introspecting access tokens to learn their subject (TokenIntrospector)

Login and consent flows are handled by Hydra and the user-facing app, not
here.
"""

import logging
from typing import Any

import httpx

from scopegate.collaborators import ClientCredentials
from scopegate.config import settings
from scopegate.errors import CollaboratorUnavailable, InvalidToken

logger = logging.getLogger("scopegate.hydra")


class HydraClient:
    """
    TokenIssuer and TokenIntrospector backed by Hydra's admin API.

    Usage::

        hydra = HydraClient("http://hydra:4445")
        credentials = await hydra.register_client(["roles.read", "roles.write"])
        subject = await hydra.introspect(access_token)
    """

    def __init__(
        self,
        admin_url: str | None = None,
        *,
        client_id: str | None = None,
        callback_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id or settings.client_id
        self.callback_url = callback_url or settings.client_callback_url
        self._http = client or httpx.AsyncClient(
            base_url=(admin_url or settings.hydra_admin_url).rstrip("/"),
            timeout=timeout or settings.http_timeout_seconds,
        )
        self._scopes: list[str] = []

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable("hydra", f"{method} {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response, action: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise CollaboratorUnavailable("hydra", f"invalid JSON while {action}") from e
        if not isinstance(data, dict):
            raise CollaboratorUnavailable("hydra", f"unexpected response while {action}")
        return data

    async def register_client(self, scope_names: list[str]) -> ClientCredentials:
        """
        (Re)create the root OAuth2 client allowed to request `scope_names`.

        Any client previously registered under the same ID is deleted first.
        """
        logger.info("Creating root client %s with scopes %s", self.client_id, scope_names)

        # Missing client is fine: this is the first registration.
        await self._request("DELETE", f"/clients/{self.client_id}")

        response = await self._request(
            "POST",
            "/clients",
            json={
                "client_id": self.client_id,
                "client_name": "scopegate",
                "grant_types": ["authorization_code", "client_credentials"],
                "response_types": ["code", "id_token"],
                "scope": " ".join(scope_names),
                "redirect_uris": [self.callback_url],
            },
        )
        if response.is_error:
            raise CollaboratorUnavailable(
                "hydra", f"error creating client (status {response.status_code})"
            )

        body = self._json(response, "creating client")
        self._scopes = list(scope_names)
        logger.info("Created root client %s", body.get("client_id", self.client_id))

        return ClientCredentials(
            client_id=body.get("client_id", self.client_id),
            client_secret=body.get("client_secret", ""),
        )

    async def introspect(self, token: str) -> str:
        """
        Return the subject of an active token.

        Raises:
            InvalidToken: If Hydra reports the token as inactive
            CollaboratorUnavailable: If Hydra cannot be reached or errors
        """
        if not token:
            raise InvalidToken()

        form = {"token": token}
        if self._scopes:
            form["scope"] = " ".join(self._scopes)

        response = await self._request("POST", "/oauth2/introspect", data=form)
        if response.is_error:
            raise CollaboratorUnavailable(
                "hydra", f"error introspecting token (status {response.status_code})"
            )

        data = self._json(response, "introspecting token")
        if not data.get("active"):
            raise InvalidToken()

        subject = data.get("sub")
        if not subject or not isinstance(subject, str):
            raise InvalidToken("Invalid token: no subject")

        return subject
