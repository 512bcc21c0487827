"""SingleShot - Cinematographic metadata for photos and video clips.

Submit a batch of media files and get, for each one, a commercial title,
keywords, a dense visual description and estimated camera settings from
Google's Gemini models. Files are analyzed concurrently and each keeps its
own lifecycle state.

Quick Start:
    >>> import asyncio
    >>> from singleshot import ItemStore, get_client, ingest_batch, read_media_file
    >>> payloads = ingest_batch([read_media_file(p) for p in paths], multiple=True)
    >>> async def run():
    ...     store = ItemStore(get_client())
    ...     store.add_batch(payloads)
    ...     await store.join()
    ...     return store.items

CLI Usage:
    $ singleshot config set-key          # Configure Gemini API key
    $ singleshot analyze --batch ~/shoot/*.CR2 -o ./metadata
    $ singleshot inspect clip.mkv
"""

__version__ = "0.1.0"

from singleshot.ai.client import AIClient, get_client
from singleshot.ingest import ingest_batch, read_media_file
from singleshot.models import (
    AnalysisItem,
    AnalysisResult,
    AnalysisStatus,
    MediaFile,
    MediaKind,
    MediaPayload,
    TechnicalParams,
)
from singleshot.store import ItemStore

__all__ = [
    # Version
    "__version__",
    # Models
    "AnalysisItem",
    "AnalysisResult",
    "AnalysisStatus",
    "MediaFile",
    "MediaKind",
    "MediaPayload",
    "TechnicalParams",
    # Pipeline
    "AIClient",
    "ItemStore",
    "get_client",
    "ingest_batch",
    "read_media_file",
]
