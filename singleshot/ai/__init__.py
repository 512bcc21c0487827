"""AI module for SingleShot.

The client.py module is the only interface to the Gemini API.

Exports:
    - AIClient: Async client performing one analysis call per file
    - get_client: Factory wiring the client to configured key storage
    - Exception hierarchy for typed error handling
"""

from singleshot.ai.client import AIClient, get_client
from singleshot.ai.errors import (
    AnalysisError,
    ConfigurationError,
    EmptyResponseError,
    MalformedResponseError,
    PayloadError,
    TransportError,
)

__all__ = [
    "AIClient",
    "get_client",
    "AnalysisError",
    "ConfigurationError",
    "EmptyResponseError",
    "MalformedResponseError",
    "PayloadError",
    "TransportError",
]
