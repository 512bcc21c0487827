"""Central Pytest Fixtures for SingleShot.

Fixtures included:
- Environment isolation: keys and config paths never leak from the host
- Core data: sample_result_data, sample_result, make_payload
- Analyzer doubles: ControlledAnalyzer for driving completion order by hand
"""

from __future__ import annotations

import asyncio
import copy
import json
from pathlib import Path
from typing import Any

import pytest

from singleshot.ingest import ingest_file
from singleshot.models import AnalysisResult, MediaFile, MediaPayload

# =============================================================================
# Sample Data
# =============================================================================


SAMPLE_RESULT_DATA: dict[str, Any] = {
    "title": "Fog Over Harbor Cranes at Dawn",
    "keywords": [
        "harbor",
        "fog",
        "dawn",
        "cranes",
        "industrial",
        "telephoto",
        "haze",
        "compression",
        "blue hour",
        "silhouette",
        "shipping",
        "port",
        "muted",
        "atmosphere",
        "layers",
        "cold light",
        "steel",
        "water",
        "mist",
        "minimal",
    ],
    "lens": "Long telephoto compression, slight veiling flare, soft corners.",
    "atmosphere": "Dense marine layer scattering cold 6500K light.",
    "angle": "Eye level from the quay, locked off, no roll.",
    "geometry": "Stacked horizontal bands broken by vertical crane legs.",
    "location": "Container port, northern Europe",
    "technicalParams": {
        "focalLength": "200mm",
        "aperture": "f/5.6",
        "iso": "400",
        "shutterSpeed": "1/250",
        "cameraType": "Full-frame mirrorless",
    },
    "visual_detail": {
        "visual_description": "Crane silhouettes step back into the fog in flat grey planes.",
        "visual_anchors": ["crane silhouettes", "veiling flare"],
        "subjects": [
            {
                "name": "Gantry crane",
                "description": "Ship-to-shore crane at rest",
                "features": "Steel lattice, boom raised",
            }
        ],
    },
}


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep API keys and config files of the host out of every test."""
    for name in ("GEMINI_API_KEY", "API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    return tmp_path


@pytest.fixture
def sample_result_data() -> dict[str, Any]:
    """Wire-format analysis result, safe to mutate."""
    return copy.deepcopy(SAMPLE_RESULT_DATA)


@pytest.fixture
def sample_result_json(sample_result_data: dict[str, Any]) -> str:
    return json.dumps(sample_result_data)


@pytest.fixture
def sample_result(sample_result_data: dict[str, Any]) -> AnalysisResult:
    return AnalysisResult.model_validate(sample_result_data)


def make_payload(filename: str, mime_type: str = "image/jpeg") -> MediaPayload:
    """Build a payload whose data is derived from the filename, so it is unique."""
    return ingest_file(MediaFile(data=filename.encode(), mime_type=mime_type, filename=filename))


@pytest.fixture
def payloads() -> list[MediaPayload]:
    return [make_payload(name) for name in ("a.jpg", "b.jpg", "c.jpg")]


# =============================================================================
# Analyzer Doubles
# =============================================================================


class ControlledAnalyzer:
    """Analyzer whose calls complete only when the test resolves them.

    Each call is keyed by its encoded payload.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.futures: dict[str, asyncio.Future[AnalysisResult]] = {}
        self.active = 0
        self.peak = 0

    async def analyze(self, encoded_payload: str, mime_type: str | None = None) -> AnalysisResult:
        self.calls.append(encoded_payload)
        future: asyncio.Future[AnalysisResult] = asyncio.get_running_loop().create_future()
        self.futures[encoded_payload] = future
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            return await future
        finally:
            self.active -= 1

    def succeed(self, payload: MediaPayload, result: AnalysisResult) -> None:
        self.futures[payload.encoded_payload].set_result(result)

    def fail(self, payload: MediaPayload, error: BaseException) -> None:
        self.futures[payload.encoded_payload].set_exception(error)


@pytest.fixture
def analyzer() -> ControlledAnalyzer:
    return ControlledAnalyzer()


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks and the completion consumer run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
