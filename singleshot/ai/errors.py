"""Exception hierarchy for media analysis.

Every failure of a single analysis call is raised as an
:class:`AnalysisError` subclass. The item store catches them at the
per-item boundary and turns them into the item's ``error`` state, so
messages must be safe to show to users.

Example:
    >>> try:
    ...     result = await client.analyze(payload)
    ... except TransportError as e:
    ...     print(e.status_code, e.message)
    ... except AnalysisError as e:
    ...     print(e.message)
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base exception for analysis failures.

    Attributes:
        message: Human-readable error description (safe to log and display).
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AnalysisError):
    """No API key could be resolved for the call."""

    def __init__(
        self,
        message: str = (
            "No Gemini API key configured. Set GEMINI_API_KEY or run "
            "'singleshot config set-key'."
        ),
    ) -> None:
        super().__init__(message)


class TransportError(AnalysisError):
    """The SDK or network call failed.

    Attributes:
        status_code: HTTP status reported by the SDK, when available.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error=original_error)
        self.status_code = status_code


class EmptyResponseError(AnalysisError):
    """The model returned no text."""

    def __init__(self, message: str = "No response text from Gemini.") -> None:
        super().__init__(message)


class MalformedResponseError(AnalysisError):
    """The model output could not be decoded into an analysis result.

    Attributes:
        raw_text: The text that failed to parse. Never logged.
    """

    def __init__(self, message: str, raw_text: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class PayloadError(AnalysisError):
    """The encoded payload is not valid base64."""

    pass
