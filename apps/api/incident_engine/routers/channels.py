"""
Channels Router - /me/channels endpoints.

Per-user delivery channel preferences. Handles are masked in responses.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from incident_engine.core.deps import get_current_session, get_db, get_runtime
from incident_engine.db.enums import ChannelType
from incident_engine.schemas.auth import UserSession
from incident_engine.services import channel_preference_service

router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================


class ChannelPreferenceRead(BaseModel):
    channel_type: ChannelType
    is_enabled: bool
    requires_configuration: bool
    is_configured: bool
    config: dict
    updated_at: datetime


class ChannelToggle(BaseModel):
    is_enabled: bool


class ChannelConfigUpdate(BaseModel):
    config: dict


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/channels", response_model=list[ChannelPreferenceRead])
def list_channels(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    prefs = channel_preference_service.get_preferences(db, session.user_id, runtime.registry)
    return [channel_preference_service.describe_preference(p, runtime.registry) for p in prefs]


@router.patch("/channels/{channel_type}", response_model=ChannelPreferenceRead)
def toggle_channel(
    channel_type: ChannelType,
    data: ChannelToggle,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Enable or disable a channel."""
    pref = channel_preference_service.set_channel_enabled(
        db, session.user_id, channel_type, data.is_enabled, runtime.registry
    )
    return channel_preference_service.describe_preference(pref, runtime.registry)


@router.put("/channels/{channel_type}/config", response_model=ChannelPreferenceRead)
def update_channel_config(
    channel_type: ChannelType,
    data: ChannelConfigUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Set the channel handle (telegram chat_id, whatsapp phone_number)."""
    pref = channel_preference_service.update_channel_config(
        db, session.user_id, channel_type, data.config, runtime.registry
    )
    return channel_preference_service.describe_preference(pref, runtime.registry)


@router.delete("/channels/{channel_type}", response_model=ChannelPreferenceRead)
def remove_channel(
    channel_type: ChannelType,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Disable a channel and forget its handle."""
    pref = channel_preference_service.remove_channel(db, session.user_id, channel_type, runtime.registry)
    return channel_preference_service.describe_preference(pref, runtime.registry)
