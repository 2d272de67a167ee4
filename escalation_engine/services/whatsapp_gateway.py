"""
WhatsApp Gateway Client (Z-API).

Sends text messages through a Z-API instance:

    POST {base}/instances/{instance_id}/token/{token}/send-text
    Client-Token: {client_token}
    {"phone": "5511999990000", "message": "..."}

Best-effort: non-2xx responses, timeouts and transport errors are returned
as a failed SendResult carrying the response body. Nothing here raises.
"""

import re
from datetime import datetime
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from escalation_engine.config import settings
from escalation_engine.db.models import utcnow

logger = structlog.get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: Optional[str]) -> str:
    """Strip every non-digit character ("+55 (11) 9..." → "55119...")."""
    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)


# ============================================================================
# MODELS
# ============================================================================


class GatewayConfig(BaseModel):
    base_url: str = "https://api.z-api.io"
    instance_id: str = ""
    token: str = ""
    client_token: str = ""
    timeout_seconds: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.instance_id and self.token)

    @property
    def instance_path(self) -> str:
        return f"/instances/{self.instance_id}/token/{self.token}"


class SendResult(BaseModel):
    """Result of one gateway send."""

    success: bool
    status_code: Optional[int] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class GatewayStatus(BaseModel):
    configured: bool
    connected: bool = False
    detail: Optional[str] = None


# ============================================================================
# CLIENT
# ============================================================================


class WhatsAppGateway:
    """
    Z-API client.

    Usage:
        gateway = WhatsAppGateway()
        result = await gateway.send_text("+55 11 99999-0000", "Olá")
        await gateway.close()

    Tests pass their own httpx.AsyncClient (e.g. over MockTransport).
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or GatewayConfig(
            base_url=settings.zapi_base_url,
            instance_id=settings.zapi_instance_id,
            token=settings.zapi_token,
            client_token=settings.zapi_client_token,
            timeout_seconds=settings.zapi_timeout_seconds,
        )
        self._client = client
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.client_token:
            headers["Client-Token"] = self._config.client_token
        return headers

    def _url(self, action: str) -> str:
        return f"{self._config.base_url.rstrip('/')}{self._config.instance_path}/{action}"

    async def send_text(self, phone: str, message: str) -> SendResult:
        """
        Send a plain text message.

        Args:
            phone: Recipient phone in any format, normalized to digits
            message: Message text
        """
        if not self.is_configured:
            return SendResult(success=False, error="gateway not configured")

        digits = normalize_phone(phone)
        if not digits:
            return SendResult(success=False, error="invalid phone")

        try:
            response = await self._get_client().post(
                self._url("send-text"),
                json={"phone": digits, "message": message},
                headers=self._headers(),
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException:
            logger.warning("whatsapp_send_timeout", phone_suffix=digits[-4:])
            return SendResult(success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.warning("whatsapp_send_error", phone_suffix=digits[-4:], error=str(e))
            return SendResult(success=False, error=str(e))

        if response.is_success:
            message_id = None
            try:
                payload = response.json()
                if isinstance(payload, dict):
                    message_id = payload.get("messageId") or payload.get("id")
            except ValueError:
                pass
            logger.info(
                "whatsapp_sent",
                phone_suffix=digits[-4:],
                status=response.status_code,
                message_id=message_id,
            )
            return SendResult(
                success=True, status_code=response.status_code, message_id=message_id
            )

        body = response.text[:500]
        logger.warning(
            "whatsapp_send_failed",
            phone_suffix=digits[-4:],
            status=response.status_code,
            body=body,
        )
        return SendResult(
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {body}",
        )

    async def status(self) -> GatewayStatus:
        """Probe the instance connection state."""
        if not self.is_configured:
            return GatewayStatus(configured=False, detail="gateway not configured")

        try:
            response = await self._get_client().get(
                self._url("status"),
                headers=self._headers(),
                timeout=self._config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("whatsapp_status_error", error=str(e))
            return GatewayStatus(configured=True, connected=False, detail=str(e))

        if not response.is_success:
            return GatewayStatus(
                configured=True,
                connected=False,
                detail=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        connected = bool(
            isinstance(payload, dict)
            and (payload.get("connected") is True or payload.get("state") == "CONNECTED")
        )
        return GatewayStatus(
            configured=True,
            connected=connected,
            detail=None if connected else str(payload)[:200],
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("whatsapp_gateway_closed")
