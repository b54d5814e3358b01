"""Tests for the Stack Auth client and the get_current_user dependency."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import Request

from src.errors import InternalError, ProviderError, Unauthorized
from src.identity import auth
from src.identity.client import AuthenticatedUser, StackAuthClient, TeamRef

# ── Helpers ──────────────────────────────────────────────────────────


def _make_response(payload: dict, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


def _client() -> StackAuthClient:
    client = StackAuthClient()
    client._project_id = "proj-1"
    client._server_key = "ssk-1"
    return client


def _patch_http(mock_client_cls, responses):
    mock_http = AsyncMock()
    mock_http.get = AsyncMock(side_effect=responses)
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_http


def _request(headers=None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


# ── StackAuthClient ──────────────────────────────────────────────────


class TestGetUser:
    @pytest.mark.asyncio()
    async def test_resolves_user_and_teams(self):
        client = _client()
        me = _make_response({"id": "u-1", "display_name": "Alex", "primary_email": "alex@example.com"})
        teams = _make_response({"items": [{"id": "team-1", "display_name": "Ops"}, {"id": "team-2"}]})

        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, [me, teams])
            user = await client.get_user("token-abc")

        assert user == AuthenticatedUser(
            id="u-1",
            display_name="Alex",
            email="alex@example.com",
            teams=(TeamRef("team-1", "Ops"), TeamRef("team-2", "")),
        )
        assert user.primary_team.id == "team-1"
        headers = mock_http.get.call_args_list[0].kwargs["headers"]
        assert headers["x-stack-access-token"] == "token-abc"
        assert headers["x-stack-project-id"] == "proj-1"
        assert headers["x-stack-secret-server-key"] == "ssk-1"

    @pytest.mark.asyncio()
    async def test_rejected_token_returns_none(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, [_make_response({}, 401)])
            assert await _client().get_user("expired") is None

    @pytest.mark.asyncio()
    async def test_server_error_raises(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, [_make_response({}, 502)])
            with pytest.raises(ProviderError):
                await _client().get_user("token")


class TestListTeamMembers:
    @pytest.mark.asyncio()
    async def test_lists_members_with_server_key(self):
        payload = {"items": [{"id": "u-1", "display_name": "Alex"}, {"id": "u-2", "display_name": None}]}

        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, [_make_response(payload)])
            members = await _client().list_team_members("team-1")

        assert [(m.id, m.display_name) for m in members] == [("u-1", "Alex"), ("u-2", None)]
        call = mock_http.get.call_args
        assert call.kwargs["params"] == {"team_id": "team-1"}
        assert "x-stack-access-token" not in call.kwargs["headers"]


# ── get_current_user ─────────────────────────────────────────────────


class TestGetCurrentUser:
    @pytest.mark.asyncio()
    async def test_no_token(self):
        with pytest.raises(Unauthorized):
            await auth.get_current_user(_request(), None)

    @pytest.mark.asyncio()
    async def test_header_token_resolved(self):
        user = AuthenticatedUser(id="u-1")
        mock_client = MagicMock()
        mock_client.is_configured = True
        mock_client.get_user = AsyncMock(return_value=user)

        with patch.object(auth, "identity_client", mock_client):
            result = await auth.get_current_user(_request({"x-stack-access-token": "tok"}), None)

        assert result is user
        mock_client.get_user.assert_awaited_once_with("tok")

    @pytest.mark.asyncio()
    async def test_unknown_token(self):
        mock_client = MagicMock()
        mock_client.is_configured = True
        mock_client.get_user = AsyncMock(return_value=None)

        with patch.object(auth, "identity_client", mock_client), pytest.raises(Unauthorized):
            await auth.get_current_user(_request({"x-stack-access-token": "tok"}), None)

    @pytest.mark.asyncio()
    async def test_provider_down_is_internal_error(self):
        mock_client = MagicMock()
        mock_client.is_configured = True
        mock_client.get_user = AsyncMock(side_effect=ProviderError("Identity provider unavailable"))

        with (
            patch.object(auth, "identity_client", mock_client),
            pytest.raises(InternalError, match="Authentication service unavailable"),
        ):
            await auth.get_current_user(_request({"x-stack-access-token": "tok"}), None)

    @pytest.mark.asyncio()
    async def test_unconfigured(self):
        mock_client = MagicMock()
        mock_client.is_configured = False

        with (
            patch.object(auth, "identity_client", mock_client),
            pytest.raises(InternalError, match="not configured"),
        ):
            await auth.get_current_user(_request({"x-stack-access-token": "tok"}), None)
