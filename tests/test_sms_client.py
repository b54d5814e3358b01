"""Tests for the Twilio client — plain SMS, Verify service resolution, errors.

All HTTP is mocked at httpx.AsyncClient; no request leaves the process.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.channels.sms import (
    CHECK_ERROR_MESSAGES,
    TwilioClient,
    describe_provider_error,
)
from src.errors import ChannelUnavailable, ProviderError

# ── Helpers ──────────────────────────────────────────────────────────


def _make_response(payload: dict, status_code: int = 200) -> MagicMock:
    """Build a mock httpx.Response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


def _configured_client(from_number="+15550000000", service_sid=None) -> TwilioClient:
    client = TwilioClient()
    client._account_sid = "AC123"
    client._auth_token = "token"
    client._from_number = from_number
    client._verify_service_sid = service_sid
    return client


def _patch_http(mock_client_cls, **responses):
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(**responses)
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_http


# ── Plain SMS ────────────────────────────────────────────────────────


class TestSendMessage:
    @pytest.mark.asyncio()
    async def test_not_configured(self):
        client = _configured_client(from_number="")

        with pytest.raises(ChannelUnavailable, match="SMS service not configured"):
            await client.send_message("+15551234567", "hi")

    @pytest.mark.asyncio()
    async def test_posts_form_and_returns_sid(self):
        client = _configured_client()

        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, return_value=_make_response({"sid": "SM42"}, 201))
            sid = await client.send_message("+15551234567", "Ticket created")

        assert sid == "SM42"
        method, url = mock_http.request.call_args[0]
        assert method == "POST"
        assert url.endswith("/Accounts/AC123/Messages.json")
        assert mock_http.request.call_args.kwargs["data"] == {
            "To": "+15551234567",
            "From": "+15550000000",
            "Body": "Ticket created",
        }
        assert mock_client_cls.call_args.kwargs["auth"] == ("AC123", "token")

    @pytest.mark.asyncio()
    async def test_error_body_becomes_provider_error(self):
        client = _configured_client()

        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(
                mock_client_cls,
                return_value=_make_response({"code": 21211, "message": "The 'To' number is not valid"}, 400),
            )
            with pytest.raises(ProviderError) as exc_info:
                await client.send_message("+15551234567", "hi")

        assert exc_info.value.code == 21211
        assert exc_info.value.upstream_message == "The 'To' number is not valid"

    @pytest.mark.asyncio()
    async def test_network_error_becomes_provider_error(self):
        client = _configured_client()

        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, side_effect=httpx.ConnectError("connection refused"))
            with pytest.raises(ProviderError) as exc_info:
                await client.send_message("+15551234567", "hi")

        assert exc_info.value.code is None


# ── Verify service resolution ────────────────────────────────────────


class TestVerifyService:
    @pytest.mark.asyncio()
    async def test_not_configured(self):
        client = TwilioClient()
        client._account_sid = ""

        with pytest.raises(ChannelUnavailable, match="SMS verification service not configured"):
            await client.get_or_create_verify_service()

    @pytest.mark.asyncio()
    async def test_pinned_sid_skips_lookup(self):
        client = _configured_client(service_sid="VA-pinned")

        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            assert await client.get_or_create_verify_service() == "VA-pinned"

        mock_request.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_finds_service_by_name(self):
        client = _configured_client()
        listing = {
            "services": [
                {"sid": "VA-other", "friendly_name": "Something Else"},
                {"sid": "VA-ours", "friendly_name": client._service_name},
            ],
        }

        with patch.object(client, "_request", new=AsyncMock(return_value=listing)):
            assert await client.get_or_create_verify_service() == "VA-ours"

    @pytest.mark.asyncio()
    async def test_creates_when_none_exist(self):
        client = _configured_client()

        async def _request(method, url, data=None, params=None):
            if method == "GET":
                return {"services": []}
            return {"sid": "VA-new"}

        with patch.object(client, "_request", new=AsyncMock(side_effect=_request)) as mock_request:
            assert await client.get_or_create_verify_service() == "VA-new"
            # Cached afterwards
            assert await client.get_or_create_verify_service() == "VA-new"

        assert mock_request.await_count == 2
        assert mock_request.call_args_list[1].kwargs["data"] == {"FriendlyName": client._service_name}

    @pytest.mark.asyncio()
    async def test_concurrent_first_calls_create_once(self):
        client = _configured_client()

        async def _request(method, url, data=None, params=None):
            await asyncio.sleep(0)
            if method == "GET":
                return {"services": []}
            return {"sid": "VA-new"}

        with patch.object(client, "_request", new=AsyncMock(side_effect=_request)) as mock_request:
            sids = await asyncio.gather(*[client.get_or_create_verify_service() for _ in range(5)])

        assert sids == ["VA-new"] * 5
        posts = [c for c in mock_request.call_args_list if c.args[0] == "POST"]
        assert len(posts) == 1


# ── Error descriptions ───────────────────────────────────────────────


class TestDescribeProviderError:
    def test_known_send_code(self):
        exc = ProviderError("x", code=21608, upstream_message="x")
        assert describe_provider_error(exc, "SMS service") == "Phone number is not SMS capable"

    def test_unknown_code_uses_prefix(self):
        exc = ProviderError("x", code=30001, upstream_message="Queue overflow")
        assert describe_provider_error(exc, "SMS service") == "SMS service error: Queue overflow"

    def test_check_table(self):
        exc = ProviderError("x", code=60203, upstream_message="x")
        assert describe_provider_error(exc, "Verification", CHECK_ERROR_MESSAGES) == "Maximum verification attempts exceeded"
