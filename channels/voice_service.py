"""
Voice Service — Outbound call placement through the Vapi REST API.

Provides:
  - VoiceService ABC: is_busy(), place_call()
  - VapiVoiceService: httpx client, Twilio credentials passed inline per call
  - validate_telephony_credentials(): enqueue-time credential check

Failure tagging:
  network error / 429 / 5xx  → TransientFailure  (queue retries with backoff)
  any other 4xx              → PermanentFailure  (dead immediately)
"""
from __future__ import annotations

import structlog
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import ConfigError, PermanentFailure, TransientFailure
from models.schemas import CallContact, TelephonyConfig, Tenant

logger = structlog.get_logger()

_LIVE_STATUSES = {"queued", "ringing", "in-progress"}


def validate_telephony_credentials(tenant: Tenant) -> TelephonyConfig:
    """Raise ConfigError unless the tenant can place calls."""
    telephony = tenant.telephony
    if telephony is None or not telephony.is_complete:
        raise ConfigError(f"Telephony credentials incomplete for tenant {tenant.id}")
    return telephony


class VoiceService(ABC):
    """External voice-call service."""

    @abstractmethod
    async def is_busy(self) -> bool:
        ...

    @abstractmethod
    async def place_call(self, tenant: Tenant, contact: CallContact, assistant_id: str) -> dict[str, Any]:
        """Returns provider call info; raises TransientFailure / PermanentFailure."""
        ...

    async def close(self) -> None:
        pass


class VapiVoiceService(VoiceService):
    """Vapi REST API client."""

    def __init__(self, api_key: str, base_url: str = "https://api.vapi.ai", max_concurrent_calls: int = 1):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_concurrent_calls = max_concurrent_calls
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._client

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _list_calls(self) -> list[dict[str, Any]]:
        client = await self._get_client()
        resp = await client.get("/call", params={"limit": 100})
        resp.raise_for_status()
        return resp.json()

    async def is_busy(self) -> bool:
        try:
            calls = await self._list_calls()
        except httpx.HTTPError as e:
            raise TransientFailure(f"Voice service probe failed: {e}") from e
        live = sum(1 for c in calls if c.get("status") in _LIVE_STATUSES)
        busy = live >= self.max_concurrent_calls
        if busy:
            logger.info("voice_service_busy", live_calls=live, limit=self.max_concurrent_calls)
        return busy

    async def place_call(self, tenant: Tenant, contact: CallContact, assistant_id: str) -> dict[str, Any]:
        telephony = validate_telephony_credentials(tenant)
        payload = {
            "assistantId": assistant_id,
            "customer": {"name": contact.name, "number": contact.number},
            "phoneNumber": {
                "twilioAccountSid": telephony.sid,
                "twilioAuthToken": telephony.auth_token,
                "twilioPhoneNumber": telephony.phone_number,
            },
        }
        client = await self._get_client()
        try:
            resp = await client.post("/call", json=payload)
        except httpx.TransportError as e:
            raise TransientFailure(f"Network error placing call: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning("vapi_call_transient_error", status=resp.status_code, body=resp.text[:300])
            raise TransientFailure(f"Voice service error {resp.status_code}")
        if resp.status_code >= 400:
            logger.error("vapi_call_rejected", status=resp.status_code, body=resp.text[:300])
            raise PermanentFailure(f"Voice service rejected call ({resp.status_code}): {resp.text[:200]}")

        data = resp.json()
        logger.info("vapi_call_placed", call_id=data.get("id"), tenant_id=tenant.id,
                    assistant_id=assistant_id)
        return {"id": data.get("id"), "status": data.get("status", "queued")}

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()


def create_voice_service(voice_config) -> VoiceService:
    return VapiVoiceService(
        api_key=voice_config.api_key,
        base_url=voice_config.base_url,
        max_concurrent_calls=voice_config.max_concurrent_calls,
    )
