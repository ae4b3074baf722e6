"""
Tests for the Vapi voice service client.

Covers:
  - Busy probe against the live call count
  - Call payload with inline Twilio credentials
  - Failure tagging: network / 429 / 5xx transient, other 4xx permanent
  - Credential validation
"""
import json
import pytest
import httpx

from channels.voice_service import VapiVoiceService, create_voice_service, validate_telephony_credentials
from config.settings import VoiceConfig
from core.errors import ConfigError, PermanentFailure, TransientFailure
from models.schemas import CallContact, TelephonyConfig, Tenant

CONTACT = CallContact(name="Ravi", number="+15551234567")


def service_with(handler, max_concurrent_calls: int = 1) -> VapiVoiceService:
    service = VapiVoiceService("vapi_key", "https://api.vapi.test", max_concurrent_calls)
    service._client = httpx.AsyncClient(base_url=service.base_url,
                                        transport=httpx.MockTransport(handler))
    return service


class TestBusyProbe:
    @pytest.mark.asyncio
    async def test_idle_when_no_live_calls(self):
        service = service_with(lambda r: httpx.Response(200, json=[{"status": "ended"}]))
        assert await service.is_busy() is False
        await service.close()

    @pytest.mark.asyncio
    async def test_busy_at_capacity(self):
        calls = [{"status": "in-progress"}, {"status": "ringing"}, {"status": "ended"}]
        service = service_with(lambda r: httpx.Response(200, json=calls), max_concurrent_calls=2)
        assert await service.is_busy() is True
        await service.close()

    @pytest.mark.asyncio
    async def test_probe_error_is_transient(self):
        service = service_with(lambda r: httpx.Response(500))
        with pytest.raises(TransientFailure):
            await service.is_busy()
        await service.close()


class TestPlaceCall:
    @pytest.mark.asyncio
    async def test_payload_and_result(self, tenant):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "vapi_call_1", "status": "queued"})

        service = service_with(handler)
        result = await service.place_call(tenant, CONTACT, "asst_1")
        await service.close()

        assert result == {"id": "vapi_call_1", "status": "queued"}
        assert seen["path"] == "/call"
        assert seen["body"]["assistantId"] == "asst_1"
        assert seen["body"]["customer"] == {"name": "Ravi", "number": "+15551234567"}
        assert seen["body"]["phoneNumber"]["twilioAccountSid"] == "AC123"
        assert seen["body"]["phoneNumber"]["twilioPhoneNumber"] == "+15550001111"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_server_side_errors_are_transient(self, tenant, status):
        service = service_with(lambda r: httpx.Response(status, text="later"))
        with pytest.raises(TransientFailure):
            await service.place_call(tenant, CONTACT, "asst_1")
        await service.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404])
    async def test_client_errors_are_permanent(self, tenant, status):
        service = service_with(lambda r: httpx.Response(status, text="nope"))
        with pytest.raises(PermanentFailure):
            await service.place_call(tenant, CONTACT, "asst_1")
        await service.close()

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, tenant):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = service_with(handler)
        with pytest.raises(TransientFailure):
            await service.place_call(tenant, CONTACT, "asst_1")
        await service.close()


class TestCredentials:
    def test_complete(self, tenant):
        assert validate_telephony_credentials(tenant).sid == "AC123"

    def test_missing_config(self):
        with pytest.raises(ConfigError):
            validate_telephony_credentials(Tenant(id="t"))

    def test_partial_config(self):
        tenant = Tenant(id="t", telephony=TelephonyConfig(sid="AC1", authToken=""))
        with pytest.raises(ConfigError):
            validate_telephony_credentials(tenant)


def test_factory_uses_voice_config():
    service = create_voice_service(VoiceConfig(api_key="k", base_url="https://x.test/", max_concurrent_calls=3))
    assert isinstance(service, VapiVoiceService)
    assert service.base_url == "https://x.test"
    assert service.max_concurrent_calls == 3
