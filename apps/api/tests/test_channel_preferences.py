"""Tests for per-user delivery channel preferences."""

import pytest

from incident_engine.core.errors import NotFoundError, ValidationError
from incident_engine.db.enums import ChannelType
from incident_engine.services import channel_preference_service
from incident_engine.services.channels.email import EmailChannel
from incident_engine.services.channels.realtime import RealtimeChannel
from incident_engine.services.channels.registry import ChannelRegistry
from incident_engine.services.channels.telegram import TelegramChannel
from incident_engine.services.channels.whatsapp import WhatsAppChannel


@pytest.fixture
def full_registry(connections) -> ChannelRegistry:
    return ChannelRegistry(
        [
            RealtimeChannel(connections),
            EmailChannel(api_key="", email_from="noreply@example.com", frontend_url="http://app"),
            TelegramChannel(bot_token="bot-token", api_base="https://tg.example", frontend_url="http://app"),
            WhatsAppChannel(relay_url="https://relay.example", relay_token="", frontend_url="http://app"),
        ]
    )


def test_defaults_created_on_first_read(db, agent, full_registry):
    prefs = channel_preference_service.get_preferences(db, agent.id, full_registry)

    assert [(p.channel_type, p.is_enabled) for p in prefs] == [
        ("websocket", True),
        ("email", True),
        ("telegram", False),
        ("whatsapp", False),
    ]
    # A second read reuses the rows
    again = channel_preference_service.get_preferences(db, agent.id, full_registry)
    assert [p.id for p in again] == [p.id for p in prefs]


def test_cannot_enable_unconfigured_channel(db, agent, full_registry):
    with pytest.raises(ValidationError):
        channel_preference_service.set_channel_enabled(
            db, agent.id, ChannelType.TELEGRAM, True, full_registry
        )


def test_configure_then_enable_telegram(db, agent, full_registry):
    channel_preference_service.update_channel_config(
        db, agent.id, ChannelType.TELEGRAM, {"chat_id": " 123456789 "}, full_registry
    )
    pref = channel_preference_service.set_channel_enabled(
        db, agent.id, ChannelType.TELEGRAM, True, full_registry
    )

    assert pref.is_enabled is True
    assert pref.config == {"chat_id": "123456789"}

    view = channel_preference_service.describe_preference(pref, full_registry)
    assert view["config"] == {"chat_id": "***456789"}
    assert view["is_configured"] is True


def test_telegram_chat_id_must_be_numeric(db, agent, full_registry):
    with pytest.raises(ValidationError):
        channel_preference_service.update_channel_config(
            db, agent.id, ChannelType.TELEGRAM, {"chat_id": "@someone"}, full_registry
        )


def test_whatsapp_number_needs_verification(db, agent, full_registry):
    pref = channel_preference_service.update_channel_config(
        db,
        agent.id,
        ChannelType.WHATSAPP,
        {"phone_number": "+1 (555) 010-2030", "verification_code": "123456"},
        full_registry,
    )

    assert pref.config["phone_number"] == "+15550102030"
    assert pref.config["is_verified"] is False
    with pytest.raises(ValidationError):
        channel_preference_service.set_channel_enabled(
            db, agent.id, ChannelType.WHATSAPP, True, full_registry
        )

    view = channel_preference_service.describe_preference(pref, full_registry)
    assert view["config"]["phone_number"] == "***2030"
    assert "verification_code" not in view["config"]


def test_client_cannot_flag_number_as_verified(db, agent, full_registry):
    pref = channel_preference_service.update_channel_config(
        db,
        agent.id,
        ChannelType.WHATSAPP,
        {"phone_number": "+15550102030", "is_verified": True},
        full_registry,
    )

    assert pref.config == {"phone_number": "+15550102030", "is_verified": False}
    with pytest.raises(ValidationError):
        channel_preference_service.set_channel_enabled(
            db, agent.id, ChannelType.WHATSAPP, True, full_registry
        )
    enabled = channel_preference_service.get_enabled_preferences(db, agent.id, full_registry)
    assert "whatsapp" not in [p.channel_type for p in enabled]


def test_verified_number_can_be_enabled(db, agent, full_registry):
    channel_preference_service.update_channel_config(
        db, agent.id, ChannelType.WHATSAPP, {"phone_number": "+15550102030"}, full_registry
    )

    verified = channel_preference_service.mark_channel_verified(
        db, agent.id, ChannelType.WHATSAPP, full_registry
    )
    assert verified.config["is_verified"] is True
    pref = channel_preference_service.set_channel_enabled(
        db, agent.id, ChannelType.WHATSAPP, True, full_registry
    )
    assert pref.is_enabled is True

    # Changing the number drops the verification
    changed = channel_preference_service.update_channel_config(
        db, agent.id, ChannelType.WHATSAPP, {"phone_number": "+15550109999"}, full_registry
    )
    assert changed.config["is_verified"] is False
    assert changed.is_enabled is False


def test_verifying_without_a_number(db, agent, full_registry):
    with pytest.raises(ValidationError):
        channel_preference_service.mark_channel_verified(
            db, agent.id, ChannelType.WHATSAPP, full_registry
        )


def test_invalid_whatsapp_number(db, agent, full_registry):
    with pytest.raises(ValidationError):
        channel_preference_service.update_channel_config(
            db, agent.id, ChannelType.WHATSAPP, {"phone_number": "5550102030"}, full_registry
        )


def test_clearing_config_disables_channel(db, agent, full_registry):
    channel_preference_service.update_channel_config(
        db, agent.id, ChannelType.TELEGRAM, {"chat_id": "42"}, full_registry
    )
    channel_preference_service.set_channel_enabled(db, agent.id, ChannelType.TELEGRAM, True, full_registry)

    pref = channel_preference_service.remove_channel(db, agent.id, ChannelType.TELEGRAM, full_registry)

    assert pref.is_enabled is False
    assert pref.config == {}


def test_enabled_preferences_skip_unregistered_channels(db, agent, full_registry, registry):
    channel_preference_service.update_channel_config(
        db, agent.id, ChannelType.TELEGRAM, {"chat_id": "42"}, full_registry
    )
    channel_preference_service.set_channel_enabled(db, agent.id, ChannelType.TELEGRAM, True, full_registry)

    # The narrow registry only knows websocket and email
    enabled = channel_preference_service.get_enabled_preferences(db, agent.id, registry)

    assert {p.channel_type for p in enabled} == {"websocket", "email"}


def test_unknown_channel_in_registry(db, agent, registry):
    with pytest.raises(NotFoundError):
        channel_preference_service.set_channel_enabled(
            db, agent.id, ChannelType.TELEGRAM, True, registry
        )
