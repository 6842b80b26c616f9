"""
Channel Preference Service - per-user delivery channel settings.

Rows are created lazily: the first read inserts one row per registered
channel, enabled only for channels that need no external handle.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from incident_engine.core.errors import ValidationError
from incident_engine.db.enums import DEFAULT_ENABLED_CHANNELS, ChannelType
from incident_engine.db.models import ChannelPreference
from incident_engine.services.channels.registry import ChannelRegistry

logger = logging.getLogger(__name__)


def _ensure_defaults(
    db: Session, user_id: UUID, registry: ChannelRegistry
) -> list[ChannelPreference]:
    existing = {
        pref.channel_type: pref
        for pref in db.query(ChannelPreference).filter(ChannelPreference.user_id == user_id).all()
    }
    missing = [ct for ct in registry.channel_types if ct.value not in existing]
    if not missing:
        return list(existing.values())

    for channel_type in missing:
        db.add(
            ChannelPreference(
                user_id=user_id,
                channel_type=channel_type.value,
                is_enabled=channel_type in DEFAULT_ENABLED_CHANNELS,
                config={},
            )
        )
    try:
        db.commit()
    except IntegrityError:
        # Another request created the defaults first
        db.rollback()
        logger.debug("Channel defaults already created for user=%s", user_id)
    return db.query(ChannelPreference).filter(ChannelPreference.user_id == user_id).all()


def get_preferences(
    db: Session, user_id: UUID, registry: ChannelRegistry
) -> list[ChannelPreference]:
    """All channel preferences of a user, creating defaults on first access."""
    prefs = _ensure_defaults(db, user_id, registry)
    order = {ct: index for index, ct in enumerate(ChannelType)}
    return sorted(prefs, key=lambda p: order.get(ChannelType(p.channel_type), len(order)))


def get_preference(
    db: Session, user_id: UUID, channel_type: ChannelType, registry: ChannelRegistry
) -> ChannelPreference:
    registry.get(channel_type)
    for pref in get_preferences(db, user_id, registry):
        if pref.channel_type == channel_type.value:
            return pref
    raise ValidationError(f"No preference row for channel {channel_type.value}")


def get_enabled_preferences(
    db: Session, user_id: UUID, registry: ChannelRegistry
) -> list[ChannelPreference]:
    """Enabled preferences for channels the registry knows about."""
    return [
        pref
        for pref in get_preferences(db, user_id, registry)
        if pref.is_enabled and registry.has(pref.channel_type)
    ]


def set_channel_enabled(
    db: Session,
    user_id: UUID,
    channel_type: ChannelType,
    enabled: bool,
    registry: ChannelRegistry,
) -> ChannelPreference:
    """
    Enable or disable a channel.

    Raises:
        ValidationError: enabling a channel whose required handle is missing.
    """
    channel = registry.get(channel_type)
    pref = get_preference(db, user_id, channel_type, registry)
    if enabled and channel.requires_configuration and not channel.is_configured(pref.config):
        raise ValidationError(
            f"Configure the {channel_type.value} channel before enabling it"
        )
    pref.is_enabled = enabled
    db.commit()
    db.refresh(pref)
    return pref


def update_channel_config(
    db: Session,
    user_id: UUID,
    channel_type: ChannelType,
    config: dict,
    registry: ChannelRegistry,
) -> ChannelPreference:
    """Replace a channel's config after channel-specific validation."""
    channel = registry.get(channel_type)
    pref = get_preference(db, user_id, channel_type, registry)
    normalized = channel.validate_config(config)
    # Reassign so the JSON column is flagged dirty
    pref.config = normalized
    if pref.is_enabled and channel.requires_configuration and not channel.is_configured(normalized):
        pref.is_enabled = False
    db.commit()
    db.refresh(pref)
    return pref


def remove_channel(
    db: Session, user_id: UUID, channel_type: ChannelType, registry: ChannelRegistry
) -> ChannelPreference:
    """Disable a channel and clear its config."""
    pref = get_preference(db, user_id, channel_type, registry)
    pref.is_enabled = False
    pref.config = {}
    db.commit()
    db.refresh(pref)
    return pref


def describe_preference(pref: ChannelPreference, registry: ChannelRegistry) -> dict:
    """Client-safe view of a preference: handles masked, secrets removed."""
    channel = registry.get(pref.channel_type)
    return {
        "channel_type": pref.channel_type,
        "is_enabled": pref.is_enabled,
        "requires_configuration": channel.requires_configuration,
        "is_configured": channel.is_configured(pref.config),
        "config": channel.sanitize_config(pref.config),
        "updated_at": pref.updated_at,
    }


def mark_channel_verified(
    db: Session, user_id: UUID, channel_type: ChannelType, registry: ChannelRegistry
) -> ChannelPreference:
    """
    Flag the stored handle as verified.

    Called by the out-of-band verification flow once the user proved they
    own the handle; never fed from client-supplied config.

    Raises:
        ValidationError: no handle is stored for the channel.
    """
    channel = registry.get(channel_type)
    pref = get_preference(db, user_id, channel_type, registry)
    config = dict(pref.config or {})
    if not all(config.get(key) for key in channel.required_config_keys):
        raise ValidationError(f"No {channel_type.value} handle to verify")
    for key in channel.secret_config_keys:
        config.pop(key, None)
    config["is_verified"] = True
    pref.config = config
    db.commit()
    db.refresh(pref)
    logger.info("Channel %s verified for user=%s", channel_type.value, user_id)
    return pref
