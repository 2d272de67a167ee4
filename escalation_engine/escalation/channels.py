"""
Channel Dispatcher — deliver one message to one subject on several channels.

Each channel is independent and fault-tolerant:
- In-App: durable notifications row, the guaranteed-visible channel
- WhatsApp: Z-API gateway, best-effort

A channel is SKIPPED (never attempted) when disabled by configuration,
when the subject did not opt in, when a contact attribute is missing or
when the gateway has no credentials. Attempted channels run concurrently;
an exception in one is converted to FAILED and never reaches the others.
"""

import asyncio
from typing import Iterable, Optional, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.db.models import Notification, Subject
from escalation_engine.escalation.schemas import Channel, ChannelResult, RenderedMessage
from escalation_engine.escalation.settings_store import EscalationConfig
from escalation_engine.services.whatsapp_gateway import WhatsAppGateway, normalize_phone

logger = structlog.get_logger(__name__)

CHANNEL_DISABLED = "channel_disabled"
NOT_OPTED_IN = "not_opted_in"
NO_PHONE = "no_phone"
GATEWAY_NOT_CONFIGURED = "gateway_not_configured"
UNKNOWN_CHANNEL = "unknown_channel"


class ChannelSender(Protocol):
    """Protocol for channel senders."""

    channel: Channel

    def skip_reason(self, subject: Subject) -> Optional[str]:
        """Why this subject cannot be reached on this channel, or None."""
        ...

    async def send(
        self, session: AsyncSession, subject: Subject, message: RenderedMessage
    ) -> ChannelResult:
        ...


class InAppSender:
    """Stores the message in the notifications table."""

    channel = Channel.IN_APP

    def skip_reason(self, subject: Subject) -> Optional[str]:
        if not subject.receive_in_app_notifications:
            return NOT_OPTED_IN
        return None

    async def send(
        self, session: AsyncSession, subject: Subject, message: RenderedMessage
    ) -> ChannelResult:
        session.add(
            Notification(
                subject_id=subject.id,
                title=message.title,
                message=message.body,
                type=message.type,
                reference_id=message.reference_id,
            )
        )
        await session.flush()
        return ChannelResult.delivered(self.channel)


class WhatsAppSender:
    """Sends the message through the WhatsApp gateway."""

    channel = Channel.WHATSAPP

    def __init__(self, gateway: WhatsAppGateway):
        self._gateway = gateway

    def skip_reason(self, subject: Subject) -> Optional[str]:
        if not subject.receive_whatsapp_notifications:
            return NOT_OPTED_IN
        if not normalize_phone(subject.phone):
            return NO_PHONE
        if not self._gateway.is_configured:
            return GATEWAY_NOT_CONFIGURED
        return None

    async def send(
        self, session: AsyncSession, subject: Subject, message: RenderedMessage
    ) -> ChannelResult:
        result = await self._gateway.send_text(subject.phone or "", message.whatsapp_text)
        if result.success:
            return ChannelResult.delivered(self.channel)
        return ChannelResult.failed(self.channel, result.error or "unknown gateway error")


class ChannelDispatcher:
    """Fans one message out to the requested channels of one subject."""

    def __init__(self, senders: Iterable[ChannelSender]):
        self._senders: dict[Channel, ChannelSender] = {s.channel: s for s in senders}

    @classmethod
    def default(cls, gateway: WhatsAppGateway) -> "ChannelDispatcher":
        return cls([InAppSender(), WhatsAppSender(gateway)])

    async def send(
        self,
        session: AsyncSession,
        subject: Subject,
        message: RenderedMessage,
        requested_channels: Iterable[str],
        config: EscalationConfig,
    ) -> dict[Channel, ChannelResult]:
        results: dict[Channel, ChannelResult] = {}
        attempts: list[tuple[Channel, ChannelSender]] = []

        for raw in dict.fromkeys(requested_channels):
            try:
                channel = Channel(raw)
            except ValueError:
                logger.warning("unknown_channel_requested", channel=raw)
                continue
            sender = self._senders.get(channel)
            if sender is None:
                results[channel] = ChannelResult.skipped(channel, UNKNOWN_CHANNEL)
                continue
            if not config.channel_enabled(channel):
                results[channel] = ChannelResult.skipped(channel, CHANNEL_DISABLED)
                continue
            reason = sender.skip_reason(subject)
            if reason is not None:
                results[channel] = ChannelResult.skipped(channel, reason)
                continue
            attempts.append((channel, sender))

        outcomes = await asyncio.gather(
            *(self._safe_send(sender, session, subject, message) for _, sender in attempts)
        )
        for (channel, _), outcome in zip(attempts, outcomes):
            results[channel] = outcome

        logger.debug(
            "dispatch_completed",
            subject_id=str(subject.id),
            results={str(c): str(r.status) for c, r in results.items()},
        )
        return results

    async def _safe_send(
        self,
        sender: ChannelSender,
        session: AsyncSession,
        subject: Subject,
        message: RenderedMessage,
    ) -> ChannelResult:
        try:
            return await sender.send(session, subject, message)
        except Exception as e:
            logger.error(
                "channel_send_error",
                channel=str(sender.channel),
                subject_id=str(subject.id),
                error=str(e),
            )
            return ChannelResult.failed(sender.channel, str(e) or type(e).__name__)
