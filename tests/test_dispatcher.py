"""Tests for NotificationDispatcher — recipients, consent gate, isolation.

Covers:
- Recipient sets per event kind (team, creator, actor exclusions)
- SMS only with ledger consent + profile flag + phone number
- Push to every active subscription, no consent gate
- One failing send does not stop the others; failures are audited
- Expired push endpoints are revoked
- on_event never raises
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.channels.push import SubscriptionGone
from src.errors import ProviderError
from src.identity.client import TeamMember
from src.models.enums import TicketStatus
from src.models.profile import UserProfile
from src.notifications.dispatcher import NotificationDispatcher
from src.schemas.events import EventType, SystemEvent
from src.schemas.tickets import TicketCreated, TicketSnapshot, TicketStatusChanged, TicketUpdated

# ── Helpers ──────────────────────────────────────────────────────────


def _snapshot(**overrides):
    fields = {
        "id": 7,
        "title": "Back door forced",
        "description": "Camera 3 shows the back door open",
        "severity": "High",
        "category": "Intrusion",
        "status": "Open",
        "team_id": "team-1",
        "creator_id": "u-creator",
        "creator_name": "Casey",
        "creator_email": "casey@example.com",
    }
    fields.update(overrides)
    return TicketSnapshot(**fields)


def _profile(user_id, phone="+15550000000", enabled=True):
    return UserProfile(user_id=user_id, phone_number=phone, sms_notifications_enabled=enabled)


def _session_factory(db=None):
    session = db or AsyncMock()

    @asynccontextmanager
    async def factory():
        yield session

    return factory


def _make_dispatcher(members=("u-creator", "u-actor", "u-2"), consent=True):
    sms = MagicMock()
    sms.send_message = AsyncMock(return_value="SM1")
    push = MagicMock()
    push.send = AsyncMock()
    directory = MagicMock()
    directory.list_team_members = AsyncMock(
        return_value=[TeamMember(id=m, display_name=m.title()) for m in members],
    )
    ledger = MagicMock()
    ledger.current_consent = AsyncMock(return_value=consent)
    dispatcher = NotificationDispatcher(
        sms=sms,
        push=push,
        directory=directory,
        session_factory=_session_factory(),
        ledger=ledger,
    )
    return dispatcher, sms, push, directory, ledger


def _patch_store(profiles=None, subscriptions=None):
    """Patch the profile and push-subscription lookups used by the dispatcher."""
    profiles = profiles or {}
    subscriptions = subscriptions or {}
    return (
        patch(
            "src.notifications.dispatcher.get_profile",
            new=AsyncMock(side_effect=lambda db, uid: profiles.get(uid)),
        ),
        patch(
            "src.notifications.dispatcher.get_active_push_subscriptions",
            new=AsyncMock(side_effect=lambda db, uid: subscriptions.get(uid, [])),
        ),
    )


def _subscription(endpoint):
    sub = MagicMock()
    sub.as_subscription_info.return_value = {"endpoint": endpoint, "keys": {"p256dh": "k", "auth": "a"}}
    return sub


def _sms_by_number(sms):
    return {c.args[0]: c.args[1] for c in sms.send_message.call_args_list}


# (event factory, team members, sole recipient, recipient role)
VARIANTS = [
    pytest.param(
        (
            lambda: TicketCreated(ticket=_snapshot(), actor_id="u-creator"),
            ("u-2",), "u-2", "team_member",
        ),
        id="created",
    ),
    pytest.param(
        (
            lambda: TicketStatusChanged(
                ticket=_snapshot(status="Resolved"), actor_id="u-actor",
                old_status=TicketStatus.OPEN, new_status=TicketStatus.RESOLVED,
            ),
            ("u-actor",), "u-creator", "ticket_creator",
        ),
        id="status-changed-creator",
    ),
    pytest.param(
        (
            lambda: TicketUpdated(ticket=_snapshot(), actor_id="u-actor", update_type="Comment", actor_name="Alex"),
            ("u-actor",), "u-creator", "ticket_creator",
        ),
        id="updated",
    ),
]


# ── Recipients ───────────────────────────────────────────────────────


class TestRecipients:
    @pytest.mark.asyncio()
    async def test_created_goes_to_team_except_actor(self):
        dispatcher, *_ = _make_dispatcher()
        event = TicketCreated(ticket=_snapshot(), actor_id="u-creator")

        recipients = await dispatcher.resolve_recipients(event)

        assert {r.user_id for r in recipients} == {"u-actor", "u-2"}
        assert all(r.role.value == "team_member" for r in recipients)

    @pytest.mark.asyncio()
    async def test_status_change_excludes_actor_and_adds_creator(self):
        dispatcher, *_ = _make_dispatcher()
        event = TicketStatusChanged(
            ticket=_snapshot(), actor_id="u-actor",
            old_status=TicketStatus.OPEN, new_status=TicketStatus.RESOLVED,
        )

        recipients = await dispatcher.resolve_recipients(event)

        roles = {r.user_id: r.role.value for r in recipients}
        assert roles == {"u-2": "team_member", "u-creator": "ticket_creator"}

    @pytest.mark.asyncio()
    async def test_status_change_by_creator_skips_creator(self):
        dispatcher, *_ = _make_dispatcher()
        event = TicketStatusChanged(
            ticket=_snapshot(), actor_id="u-creator",
            old_status=TicketStatus.OPEN, new_status=TicketStatus.CLOSED,
        )

        recipients = await dispatcher.resolve_recipients(event)

        assert {r.user_id for r in recipients} == {"u-actor", "u-2"}

    @pytest.mark.asyncio()
    async def test_update_goes_to_creator_only(self):
        dispatcher, _, _, directory, _ = _make_dispatcher()
        event = TicketUpdated(
            ticket=_snapshot(), actor_id="u-actor", update_type="Comment", actor_name="Alex",
        )

        recipients = await dispatcher.resolve_recipients(event)

        assert [(r.user_id, r.role.value) for r in recipients] == [("u-creator", "ticket_creator")]
        directory.list_team_members.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_update_by_creator_notifies_nobody(self):
        dispatcher, *_ = _make_dispatcher()
        event = TicketUpdated(
            ticket=_snapshot(), actor_id="u-creator", update_type="Comment", actor_name="Casey",
        )

        assert await dispatcher.resolve_recipients(event) == []

    @pytest.mark.asyncio()
    async def test_directory_failure_means_empty_team(self):
        dispatcher, _, _, directory, _ = _make_dispatcher()
        directory.list_team_members.side_effect = ProviderError("Identity provider error", code=503)
        event = TicketStatusChanged(
            ticket=_snapshot(), actor_id="u-actor",
            old_status=TicketStatus.OPEN, new_status=TicketStatus.RESOLVED,
        )

        recipients = await dispatcher.resolve_recipients(event)

        assert [r.user_id for r in recipients] == ["u-creator"]


# ── SMS consent gate ─────────────────────────────────────────────────


class TestSmsGate:
    @pytest.mark.asyncio()
    async def test_sms_sent_with_consent_flag_and_phone(self):
        dispatcher, sms, *_ = _make_dispatcher(members=("u-2",))
        profiles = {"u-2": _profile("u-2", phone="+15550002")}
        p1, p2 = _patch_store(profiles)

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            report = await dispatcher.dispatch(TicketCreated(ticket=_snapshot(), actor_id="u-creator"))

        assert report.sent == 1
        body = _sms_by_number(sms)["+15550002"]
        assert "New Support Ticket Created" in body
        assert "Back door forced" in body

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("variant", VARIANTS)
    async def test_sms_sent_for_every_variant(self, variant):
        make_event, members, recipient_id, role = variant
        dispatcher, sms, *_ = _make_dispatcher(members=members)
        p1, p2 = _patch_store({recipient_id: _profile(recipient_id, phone="+15550009")})

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            recipients = await dispatcher.resolve_recipients(make_event())
            report = await dispatcher.dispatch(make_event())

        assert [(r.user_id, r.role.value) for r in recipients] == [(recipient_id, role)]
        assert report.sent == 1
        assert list(_sms_by_number(sms)) == ["+15550009"]

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("variant", VARIANTS)
    async def test_no_sms_without_ledger_consent(self, variant, caplog):
        make_event, members, recipient_id, _ = variant
        dispatcher, sms, *_ = _make_dispatcher(members=members, consent=False)
        p1, p2 = _patch_store({recipient_id: _profile(recipient_id)})

        with (
            p1, p2,
            patch("src.notifications.dispatcher.emit", new_callable=AsyncMock),
            caplog.at_level(logging.WARNING, logger="src.notifications.dispatcher"),
        ):
            report = await dispatcher.dispatch(make_event())

        sms.send_message.assert_not_awaited()
        assert report.skipped == 1
        assert "consent mismatch" in caplog.text

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("variant", VARIANTS)
    async def test_no_sms_when_profile_flag_off(self, variant):
        make_event, members, recipient_id, _ = variant
        dispatcher, sms, *_ = _make_dispatcher(members=members, consent=True)
        p1, p2 = _patch_store({recipient_id: _profile(recipient_id, enabled=False)})

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            report = await dispatcher.dispatch(make_event())

        sms.send_message.assert_not_awaited()
        assert report.skipped == 1

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("variant", VARIANTS)
    async def test_no_sms_without_profile(self, variant):
        make_event, members, _, _ = variant
        dispatcher, sms, *_ = _make_dispatcher(members=members, consent=False)
        p1, p2 = _patch_store({})

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            report = await dispatcher.dispatch(make_event())

        sms.send_message.assert_not_awaited()
        assert report.skipped == 1

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("variant", VARIANTS)
    async def test_no_sms_without_phone(self, variant):
        make_event, members, recipient_id, _ = variant
        dispatcher, sms, *_ = _make_dispatcher(members=members)
        p1, p2 = _patch_store({recipient_id: _profile(recipient_id, phone=None)})

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            report = await dispatcher.dispatch(make_event())

        sms.send_message.assert_not_awaited()
        assert report.skipped == 1

    @pytest.mark.asyncio()
    async def test_creator_and_team_get_different_wording(self):
        dispatcher, sms, *_ = _make_dispatcher()
        profiles = {
            "u-creator": _profile("u-creator", phone="+15550001"),
            "u-2": _profile("u-2", phone="+15550002"),
            "u-actor": _profile("u-actor", phone="+15550003"),
        }
        p1, p2 = _patch_store(profiles)
        event = TicketStatusChanged(
            ticket=_snapshot(status="Resolved"), actor_id="u-actor",
            old_status=TicketStatus.OPEN, new_status=TicketStatus.RESOLVED,
        )

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            await dispatcher.dispatch(event)

        sent = _sms_by_number(sms)
        assert set(sent) == {"+15550001", "+15550002"}
        assert "Your Ticket Status Updated" in sent["+15550001"]
        assert sent["+15550002"].startswith("\u2705 Ticket Status Updated")
        assert "Status: Open \u2192 Resolved" in sent["+15550002"]


# ── Push ─────────────────────────────────────────────────────────────


class TestPush:
    @pytest.mark.asyncio()
    async def test_push_to_every_active_subscription_without_consent(self):
        dispatcher, sms, push, *_ = _make_dispatcher(members=("u-2",), consent=False)
        subs = {"u-2": [_subscription("https://push/a"), _subscription("https://push/b")]}
        p1, p2 = _patch_store(subscriptions=subs)

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            report = await dispatcher.dispatch(TicketCreated(ticket=_snapshot(), actor_id="u-creator"))

        assert push.send.await_count == 2
        endpoints = {c.args[0]["endpoint"] for c in push.send.call_args_list}
        assert endpoints == {"https://push/a", "https://push/b"}
        payload = push.send.call_args_list[0].args[1]
        assert "New Support Ticket Created" in payload["body"]
        sms.send_message.assert_not_awaited()
        assert report.sent == 2

    @pytest.mark.asyncio()
    async def test_gone_subscription_revoked(self):
        dispatcher, _, push, *_ = _make_dispatcher(members=("u-2",))
        push.send.side_effect = SubscriptionGone("Push subscription expired", code=410)
        p1, p2 = _patch_store(subscriptions={"u-2": [_subscription("https://push/dead")]})
        stored = MagicMock()

        with (
            p1, p2,
            patch("src.notifications.dispatcher.emit", new_callable=AsyncMock),
            patch(
                "src.notifications.dispatcher.get_push_subscription_by_endpoint",
                new_callable=AsyncMock, return_value=stored,
            ) as mock_lookup,
            patch("src.notifications.dispatcher.revoke_push_subscription", new_callable=AsyncMock) as mock_revoke,
        ):
            report = await dispatcher.dispatch(TicketCreated(ticket=_snapshot(), actor_id="u-creator"))

        assert report.expired_endpoints == ["https://push/dead"]
        assert mock_lookup.call_args[0][1] == "https://push/dead"
        assert mock_revoke.call_args[0][1] is stored


# ── Isolation ────────────────────────────────────────────────────────


class TestIsolation:
    @pytest.mark.asyncio()
    async def test_one_failure_does_not_block_others(self):
        dispatcher, sms, *_ = _make_dispatcher(members=("u-1", "u-2"))
        profiles = {
            "u-1": _profile("u-1", phone="+15550001"),
            "u-2": _profile("u-2", phone="+15550002"),
        }
        p1, p2 = _patch_store(profiles)

        async def _send(to, body):
            if to == "+15550001":
                raise ProviderError("Invalid phone number", code=21211)
            return "SM2"

        sms.send_message.side_effect = _send

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock) as mock_emit:
            report = await dispatcher.dispatch(TicketCreated(ticket=_snapshot(), actor_id="u-creator"))

        assert report.sent == 1
        assert report.failed == 1
        failed = [c.args[0] for c in mock_emit.call_args_list if c.args[0].event_type == EventType.NOTIFICATION_FAILED]
        assert len(failed) == 1
        assert failed[0].data["recipient_id"] == "u-1"
        assert failed[0].data["code"] == 21211
        summary = mock_emit.call_args_list[-1].args[0]
        assert summary.event_type == EventType.NOTIFICATION_SENT
        assert summary.data["sent"] == 1

    @pytest.mark.asyncio()
    async def test_planning_failure_does_not_block_others(self):
        dispatcher, sms, _, _, ledger = _make_dispatcher(members=("u-bad", "u-ok"))
        profiles = {
            "u-bad": _profile("u-bad", phone="+15550001"),
            "u-ok": _profile("u-ok", phone="+15550002"),
        }
        p1, p2 = _patch_store(profiles)

        async def _consent(db, user_id, consent_type):
            if user_id == "u-bad":
                raise RuntimeError("ledger query failed")
            return True

        ledger.current_consent.side_effect = _consent

        with p1, p2, patch("src.notifications.dispatcher.emit", new_callable=AsyncMock):
            report = await dispatcher.dispatch(TicketCreated(ticket=_snapshot(), actor_id="u-creator"))

        sms.send_message.assert_awaited_once()
        assert list(_sms_by_number(sms)) == ["+15550002"]
        assert report.sent == 1
        assert report.failed == 1


# ── on_event ─────────────────────────────────────────────────────────


class TestOnEvent:
    @pytest.mark.asyncio()
    async def test_ignores_non_ticket_events(self):
        dispatcher, _, _, directory, _ = _make_dispatcher()

        await dispatcher.on_event(SystemEvent(event_type=EventType.CONSENT_GRANTED, actor_id="u-1"))

        directory.list_team_members.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_rebuilds_event_and_dispatches(self):
        dispatcher, *_ = _make_dispatcher()
        event = SystemEvent(
            event_type=EventType.TICKET_STATUS_CHANGED,
            ticket_id=7,
            actor_id="u-actor",
            data={
                "ticket": _snapshot().model_dump(mode="json"),
                "old_status": "Open",
                "new_status": "Closed",
            },
        )

        with patch.object(dispatcher, "dispatch", new_callable=AsyncMock) as mock_dispatch:
            await dispatcher.on_event(event)

        notification = mock_dispatch.call_args[0][0]
        assert isinstance(notification, TicketStatusChanged)
        assert notification.actor_id == "u-actor"
        assert notification.new_status is TicketStatus.CLOSED

    @pytest.mark.asyncio()
    async def test_never_raises(self):
        dispatcher, *_ = _make_dispatcher()
        event = SystemEvent(
            event_type=EventType.TICKET_CREATED,
            ticket_id=7,
            actor_id="u-creator",
            data={"ticket": _snapshot().model_dump(mode="json")},
        )

        with (
            patch("src.notifications.dispatcher.get_profile", new=AsyncMock(side_effect=RuntimeError("db down"))),
            patch("src.notifications.dispatcher.emit", new_callable=AsyncMock) as mock_emit,
        ):
            await dispatcher.on_event(event)

        summary = mock_emit.call_args.args[0]
        assert summary.data["sent"] == 0
        assert summary.data["failed"] == 2

    @pytest.mark.asyncio()
    async def test_malformed_event_logged_not_raised(self):
        dispatcher, _, _, directory, _ = _make_dispatcher()
        event = SystemEvent(event_type=EventType.TICKET_CREATED, ticket_id=7, data={})

        await dispatcher.on_event(event)

        directory.list_team_members.assert_not_awaited()
