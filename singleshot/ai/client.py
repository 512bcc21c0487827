"""Gemini API client for SingleShot.

This module is the only place that talks to the Gemini API. One call to
:meth:`AIClient.analyze` sends one encoded file together with the analysis
prompt and response schema, and returns a validated
:class:`~singleshot.models.AnalysisResult`.

The API key is resolved when a call is made, never at import or startup, so
a missing key fails the affected analysis only. There is no retry: each
failure surfaces as one typed :class:`AnalysisError`.

Example:
    >>> from singleshot.ai.client import get_client
    >>> client = get_client()
    >>> result = asyncio.run(client.analyze("data:image/png;base64,iVBORw0..."))
    >>> print(result.title)
"""

from __future__ import annotations

import base64
import binascii
import logging
from functools import partial
from typing import Callable

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from singleshot.ai.errors import (
    AnalysisError,
    ConfigurationError,
    EmptyResponseError,
    MalformedResponseError,
    PayloadError,
    TransportError,
)
from singleshot.ai.parsing import parse_analysis
from singleshot.ai.prompts import (
    ANALYSIS_RESULT_SCHEMA,
    DEFAULT_PROMPT_ID,
    PromptTemplate,
    build_analysis_prompt,
    get_prompt,
)
from singleshot.config import (
    AISettings,
    APIKeyNotFoundError,
    AppConfig,
    KeyStorageError,
    get_api_key,
    get_config,
)
from singleshot.ingest import classify_kind
from singleshot.models import AnalysisResult

logger = logging.getLogger(__name__)

__all__ = [
    "AIClient",
    "AnalysisError",
    "ConfigurationError",
    "EmptyResponseError",
    "MalformedResponseError",
    "PayloadError",
    "TransportError",
    "DEFAULT_PAYLOAD_MIME_TYPE",
    "get_client",
    "resolve_payload_mime_type",
    "strip_data_url_prefix",
]

DEFAULT_PAYLOAD_MIME_TYPE = "image/jpeg"

KeyProvider = Callable[[], "str | None"]


# =============================================================================
# Payload Helpers
# =============================================================================


def _split_data_url(encoded_payload: str) -> tuple[str | None, str]:
    """Split ``data:<mime>;base64,<body>`` into ``(mime, body)``."""
    if not encoded_payload.startswith("data:"):
        return None, encoded_payload

    header, sep, body = encoded_payload.partition(",")
    if not sep or not header.endswith(";base64"):
        return None, encoded_payload

    mime_type = header[len("data:") : -len(";base64")]
    return mime_type or None, body


def resolve_payload_mime_type(encoded_payload: str, hint: str | None = None) -> str:
    """Decide which MIME type to declare for a payload.

    Precedence: explicit hint, then the data-URL declaration, then
    ``image/jpeg``.

    Example:
        >>> resolve_payload_mime_type("data:image/png;base64,AAAA")
        'image/png'
        >>> resolve_payload_mime_type("AAAA")
        'image/jpeg'
    """
    if hint:
        return hint
    declared, _ = _split_data_url(encoded_payload)
    return declared or DEFAULT_PAYLOAD_MIME_TYPE


def strip_data_url_prefix(encoded_payload: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix, leaving the base64 body.

    Example:
        >>> strip_data_url_prefix("data:image/png;base64,AAAA")
        'AAAA'
    """
    _, body = _split_data_url(encoded_payload)
    return body


def decode_payload(encoded_payload: str) -> bytes:
    """Decode the base64 body of a payload.

    Raises:
        PayloadError: If the body is not valid base64.
    """
    body = strip_data_url_prefix(encoded_payload)
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadError("Payload is not valid base64 data.", original_error=e) from e


# =============================================================================
# AI Client
# =============================================================================


class AIClient:
    """Client for single-shot media analysis with Gemini.

    Attributes:
        settings: AI settings (model, temperature, timeout).
        prompt: Prompt template sent with every request.

    Example:
        >>> client = AIClient(api_key="AIza...")
        >>> result = await client.analyze(payload, mime_type="image/x-canon-cr2")
    """

    def __init__(
        self,
        settings: AISettings | None = None,
        api_key: str | None = None,
        key_provider: KeyProvider | None = None,
        prompt_id: str = DEFAULT_PROMPT_ID,
    ) -> None:
        """Initialize the client.

        Args:
            settings: AI settings. Defaults are used if None.
            api_key: Explicit API key. Takes precedence over ``key_provider``.
            key_provider: Callable returning the key (or None) at call time. It
                may raise ``APIKeyNotFoundError`` or ``KeyStorageError``.
            prompt_id: Registered prompt template to send.

        Raises:
            KeyError: If ``prompt_id`` is not registered.
        """
        self.settings = settings or AISettings()
        self._api_key = api_key
        self._key_provider = key_provider
        self.prompt: PromptTemplate = get_prompt(prompt_id)
        self._sdk_client: genai.Client | None = None
        self._sdk_client_key: str | None = None

    # -------------------------------------------------------------------------
    # Key resolution
    # -------------------------------------------------------------------------

    def _resolve_api_key(self) -> str:
        """Resolve the API key for the current call.

        Raises:
            ConfigurationError: If no key is available.
        """
        if self._api_key:
            return self._api_key

        if self._key_provider is not None:
            try:
                key = self._key_provider()
            except APIKeyNotFoundError as e:
                raise ConfigurationError() from e
            except KeyStorageError as e:
                raise ConfigurationError(f"Could not read the stored API key: {e}") from e
            if key:
                return key

        raise ConfigurationError()

    def is_configured(self) -> bool:
        """Check if an API key can be resolved, without any network call."""
        try:
            self._resolve_api_key()
        except ConfigurationError:
            return False
        return True

    def _get_sdk_client(self, api_key: str) -> genai.Client:
        """Return a Gemini client for ``api_key``, reusing it while the key is unchanged."""
        if self._sdk_client is None or self._sdk_client_key != api_key:
            self._sdk_client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=self.settings.timeout_seconds * 1000),
            )
            self._sdk_client_key = api_key
        return self._sdk_client

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def _build_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=self.prompt.output_schema or ANALYSIS_RESULT_SCHEMA,
            temperature=self.settings.temperature,
        )

    async def analyze(self, encoded_payload: str, mime_type: str | None = None) -> AnalysisResult:
        """Analyze one encoded media file.

        Args:
            encoded_payload: Data URL or bare base64 body.
            mime_type: Optional MIME type overriding the data-URL declaration.

        Returns:
            The validated analysis result.

        Raises:
            ConfigurationError: If no API key is configured.
            PayloadError: If the payload is not valid base64.
            TransportError: If the API call fails.
            EmptyResponseError: If the model returns no text.
            MalformedResponseError: If the output cannot be parsed.
        """
        api_key = self._resolve_api_key()

        resolved_mime = resolve_payload_mime_type(encoded_payload, mime_type)
        data = decode_payload(encoded_payload)
        prompt = build_analysis_prompt(classify_kind(resolved_mime), self.prompt)

        client = self._get_sdk_client(api_key)
        logger.debug(
            f"Requesting analysis: model={self.settings.model_name}, "
            f"prompt={self.prompt.id}@{self.prompt.version}, "
            f"mime={resolved_mime}, bytes={len(data)}"
        )

        try:
            response = await client.aio.models.generate_content(
                model=self.settings.model_name,
                contents=[types.Part.from_bytes(data=data, mime_type=resolved_mime), prompt],
                config=self._build_config(),
            )
        except genai_errors.APIError as e:
            logger.warning(f"Gemini API error {e.code}: {e.message}")
            raise TransportError(
                e.message or str(e), status_code=e.code, original_error=e
            ) from e
        except Exception as e:
            logger.warning(f"Gemini request failed: {type(e).__name__}")
            raise TransportError(str(e) or type(e).__name__, original_error=e) from e

        text = response.text
        if not text or not text.strip():
            raise EmptyResponseError()

        try:
            result = parse_analysis(text)
        except MalformedResponseError:
            logger.warning(f"Unparseable response ({len(text)} chars)")
            raise

        logger.debug(f"Analysis complete: {result.title!r}")
        return result


# =============================================================================
# Factory
# =============================================================================


def get_client(config: AppConfig | None = None) -> AIClient:
    """Create an AIClient wired to the configured key storage.

    The key is looked up through :func:`~singleshot.config.get_api_key`
    on each call, so configuring a key later takes effect without
    rebuilding the client.
    """
    config = config or get_config()
    return AIClient(settings=config.ai, key_provider=partial(get_api_key, config))
