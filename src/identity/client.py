"""Async httpx client for the Stack Auth identity provider.

Identity and team membership live in Stack Auth; this service never stores
them. Two kinds of calls are made:

- on behalf of a caller (their access token) to resolve who they are and
  which teams they belong to,
- with the server key alone to list a team's members for notification
  fan-out, where no caller is present.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.config import settings
from src.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeamRef:
    id: str
    display_name: str = ""


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller of a request, as reported by the identity provider."""

    id: str
    display_name: str | None = None
    email: str | None = None
    teams: tuple[TeamRef, ...] = field(default_factory=tuple)

    @property
    def team_ids(self) -> list[str]:
        return [t.id for t in self.teams]

    @property
    def primary_team(self) -> TeamRef | None:
        """The first team listed — the team a caller works in by default."""
        return self.teams[0] if self.teams else None

    def is_member(self, team_id: str) -> bool:
        return any(t.id == team_id for t in self.teams)


@dataclass(frozen=True)
class TeamMember:
    id: str
    display_name: str | None = None


class StackAuthClient:
    """Thin async wrapper around the Stack Auth REST API.

    Endpoints:
        GET {api}/users/me                 (caller's access token)
        GET {api}/teams?user_id=me         (caller's access token)
        GET {api}/users?team_id={team_id}  (server key only)
    """

    def __init__(self) -> None:
        self._base_url = settings.identity.stack_api_url.rstrip("/")
        self._project_id = settings.identity.stack_project_id
        self._server_key = settings.identity.stack_secret_server_key
        self._timeout = httpx.Timeout(10.0, connect=5.0)

    @property
    def is_configured(self) -> bool:
        return bool(self._project_id and self._server_key)

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "x-stack-access-type": "server",
            "x-stack-project-id": self._project_id,
            "x-stack-secret-server-key": self._server_key,
        }
        if access_token:
            headers["x-stack-access-token"] = access_token
        return headers

    async def _get(self, path: str, access_token: str | None = None, **params: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.get(
                    f"{self._base_url}{path}",
                    headers=self._headers(access_token),
                    params=params or None,
                )
        except httpx.HTTPError as exc:
            logger.warning("Stack Auth request %s failed: %s", path, exc)
            raise ProviderError("Identity provider unavailable", upstream_message=str(exc)) from exc

    async def get_user(self, access_token: str) -> AuthenticatedUser | None:
        """Resolve an access token to a user with their teams.

        Returns None when the provider rejects the token.
        """
        response = await self._get("/users/me", access_token)
        if response.status_code in (401, 403, 404):
            return None
        self._raise_for_status(response, "/users/me")
        payload: dict[str, Any] = response.json()

        teams_response = await self._get("/teams", access_token, user_id="me")
        self._raise_for_status(teams_response, "/teams")
        teams = tuple(
            TeamRef(id=str(item["id"]), display_name=item.get("display_name") or "")
            for item in teams_response.json().get("items", [])
        )

        return AuthenticatedUser(
            id=str(payload["id"]),
            display_name=payload.get("display_name"),
            email=payload.get("primary_email"),
            teams=teams,
        )

    async def list_team_members(self, team_id: str) -> list[TeamMember]:
        """All users in a team. Server-side call, no caller context."""
        response = await self._get("/users", team_id=team_id)
        self._raise_for_status(response, "/users")
        return [
            TeamMember(id=str(item["id"]), display_name=item.get("display_name"))
            for item in response.json().get("items", [])
        ]

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.status_code >= 400:
            logger.warning("Stack Auth %s returned HTTP %s", path, response.status_code)
            raise ProviderError(
                "Identity provider error",
                code=response.status_code,
                upstream_message=response.text[:200],
            )


# Module-level singleton
identity_client = StackAuthClient()
