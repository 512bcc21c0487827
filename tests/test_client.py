"""Tests for the Gemini analysis client with mocking (no real API calls)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import errors as genai_errors

from singleshot.ai.client import (
    AIClient,
    ConfigurationError,
    EmptyResponseError,
    MalformedResponseError,
    PayloadError,
    TransportError,
    get_client,
    resolve_payload_mime_type,
    strip_data_url_prefix,
)
from singleshot.ai.prompts import SINGLE_SHOT_PROMPT
from singleshot.config import AISettings, APIKeyNotFoundError, AppConfig, KeyStorageError

PNG_PAYLOAD = "data:image/png;base64,AAAA"


def mock_sdk(text: str | None = None, error: Exception | None = None) -> MagicMock:
    """Build a mock genai module whose client returns ``text`` or raises ``error``."""
    response = MagicMock()
    response.text = text

    sdk_client = MagicMock()
    sdk_client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)

    genai = MagicMock()
    genai.Client.return_value = sdk_client
    return genai


def generate_call(genai: MagicMock) -> dict:
    return genai.Client.return_value.aio.models.generate_content.call_args.kwargs


# =============================================================================
# Payload Helpers
# =============================================================================


class TestPayloadHelpers:
    """Tests for MIME resolution and prefix stripping."""

    def test_data_url_declaration_used_without_hint(self) -> None:
        assert resolve_payload_mime_type(PNG_PAYLOAD) == "image/png"
        assert strip_data_url_prefix(PNG_PAYLOAD) == "AAAA"

    def test_hint_wins(self) -> None:
        assert resolve_payload_mime_type(PNG_PAYLOAD, "image/x-canon-cr2") == "image/x-canon-cr2"

    def test_bare_base64_defaults_to_jpeg(self) -> None:
        assert resolve_payload_mime_type("AAAA") == "image/jpeg"
        assert strip_data_url_prefix("AAAA") == "AAAA"

    def test_vendor_mime_in_data_url(self) -> None:
        payload = "data:image/x-canon-cr2;base64,AAAA"

        assert resolve_payload_mime_type(payload) == "image/x-canon-cr2"
        assert strip_data_url_prefix(payload) == "AAAA"


# =============================================================================
# AIClient
# =============================================================================


class TestAIClient:
    """Tests for AIClient.analyze."""

    def test_successful_analysis(self, sample_result_json: str) -> None:
        genai = mock_sdk(text=sample_result_json)
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(api_key="test-key-123456")
            result = asyncio.run(client.analyze(PNG_PAYLOAD))

        assert result.title == "Fog Over Harbor Cranes at Dawn"

        call = generate_call(genai)
        assert call["model"] == "gemini-3-flash-preview"
        part, prompt = call["contents"]
        assert part.inline_data.mime_type == "image/png"
        assert part.inline_data.data == b"\x00\x00\x00"
        assert "photograph" in prompt
        assert call["config"].response_mime_type == "application/json"

    def test_mime_hint_and_video_prompt(self, sample_result_json: str) -> None:
        genai = mock_sdk(text=sample_result_json)
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(api_key="test-key-123456")
            asyncio.run(client.analyze("AAAA", mime_type="video/x-matroska"))

        part, prompt = generate_call(genai)["contents"]
        assert part.inline_data.mime_type == "video/x-matroska"
        assert "video clip" in prompt

    def test_settings_applied(self, sample_result_json: str) -> None:
        genai = mock_sdk(text=sample_result_json)
        settings = AISettings(model_name="gemini-2.5-flash", temperature=0.9, timeout_seconds=30)
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(settings=settings, api_key="test-key-123456")
            asyncio.run(client.analyze(PNG_PAYLOAD))

        genai.Client.assert_called_once()
        assert genai.Client.call_args.kwargs["api_key"] == "test-key-123456"
        assert genai.Client.call_args.kwargs["http_options"].timeout == 30_000
        call = generate_call(genai)
        assert call["model"] == "gemini-2.5-flash"
        assert call["config"].temperature == 0.9

    def test_registered_prompt_sent(self, sample_result_json: str) -> None:
        genai = mock_sdk(text=sample_result_json)
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(api_key="test-key-123456", prompt_id="single_shot_v1")
            asyncio.run(client.analyze(PNG_PAYLOAD))

        assert client.prompt is SINGLE_SHOT_PROMPT
        _, prompt = generate_call(genai)["contents"]
        assert prompt == SINGLE_SHOT_PROMPT.render(media_label="photograph")

    def test_unknown_prompt_rejected(self) -> None:
        with pytest.raises(KeyError, match="no_such_prompt"):
            AIClient(api_key="test-key-123456", prompt_id="no_such_prompt")

    def test_sdk_client_reused(self, sample_result_json: str) -> None:
        genai = mock_sdk(text=sample_result_json)
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(api_key="test-key-123456")

            async def run_twice() -> None:
                await client.analyze(PNG_PAYLOAD)
                await client.analyze(PNG_PAYLOAD)

            asyncio.run(run_twice())

        genai.Client.assert_called_once()

    def test_missing_key_fails_before_network(self) -> None:
        genai = mock_sdk(text="{}")
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(key_provider=lambda: None)

            with pytest.raises(ConfigurationError):
                asyncio.run(client.analyze(PNG_PAYLOAD))

        genai.Client.assert_not_called()
        assert not client.is_configured()

    def test_key_resolved_at_call_time(self, sample_result_json: str) -> None:
        keys: list[str | None] = [None]
        genai = mock_sdk(text=sample_result_json)
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(key_provider=lambda: keys[0])
            assert not client.is_configured()

            keys[0] = "late-key-123456"
            asyncio.run(client.analyze(PNG_PAYLOAD))

        assert genai.Client.call_args.kwargs["api_key"] == "late-key-123456"

    def test_unreadable_key_is_configuration_error(self) -> None:
        def broken_provider() -> str | None:
            raise KeyStorageError("decryption failed")

        client = AIClient(key_provider=broken_provider)

        with pytest.raises(ConfigurationError, match="decryption failed"):
            asyncio.run(client.analyze(PNG_PAYLOAD))

    def test_invalid_base64(self) -> None:
        genai = mock_sdk(text="{}")
        with patch("singleshot.ai.client.genai", genai):
            client = AIClient(api_key="test-key-123456")

            with pytest.raises(PayloadError):
                asyncio.run(client.analyze("data:image/png;base64,!!not base64!!"))

        genai.Client.return_value.aio.models.generate_content.assert_not_called()

    @pytest.mark.parametrize("text", [None, "", "   \n"])
    def test_empty_response(self, text: str | None) -> None:
        with patch("singleshot.ai.client.genai", mock_sdk(text=text)):
            client = AIClient(api_key="test-key-123456")

            with pytest.raises(EmptyResponseError):
                asyncio.run(client.analyze(PNG_PAYLOAD))

    def test_malformed_response(self) -> None:
        with patch("singleshot.ai.client.genai", mock_sdk(text='{"title": "Only a title"}')):
            client = AIClient(api_key="test-key-123456")

            with pytest.raises(MalformedResponseError):
                asyncio.run(client.analyze(PNG_PAYLOAD))

    def test_api_error_becomes_transport_error(self) -> None:
        api_error = genai_errors.ClientError(
            429, {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}}
        )
        with patch("singleshot.ai.client.genai", mock_sdk(error=api_error)):
            client = AIClient(api_key="test-key-123456")

            with pytest.raises(TransportError) as exc_info:
                asyncio.run(client.analyze(PNG_PAYLOAD))

        assert exc_info.value.status_code == 429
        assert "Resource exhausted" in exc_info.value.message
        assert exc_info.value.original_error is api_error

    def test_network_error_becomes_transport_error(self) -> None:
        with patch("singleshot.ai.client.genai", mock_sdk(error=ConnectionError("connection reset"))):
            client = AIClient(api_key="test-key-123456")

            with pytest.raises(TransportError) as exc_info:
                asyncio.run(client.analyze(PNG_PAYLOAD))

        assert exc_info.value.status_code is None
        assert "connection reset" in exc_info.value.message


class TestGetClient:
    """Tests for the client factory."""

    def test_reads_key_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        client = get_client(AppConfig())
        assert not client.is_configured()

        monkeypatch.setenv("GEMINI_API_KEY", "env-key-123456")
        assert client.is_configured()

    def test_uses_configured_settings(self) -> None:
        config = AppConfig(ai=AISettings(model_name="gemini-2.5-pro"))

        assert get_client(config).settings.model_name == "gemini-2.5-pro"

    def test_missing_stored_key_is_configuration_error(self) -> None:
        genai = mock_sdk(text="{}")
        with patch("singleshot.ai.client.genai", genai):
            client = get_client(AppConfig())

            with pytest.raises(ConfigurationError) as exc_info:
                asyncio.run(client.analyze(PNG_PAYLOAD))

        assert isinstance(exc_info.value.__cause__, APIKeyNotFoundError)
        genai.Client.assert_not_called()
