"""Prompt templates and output schema for media analysis.

This module is the single source of the instructions sent to Gemini. The
analysis prompt asks for a "Single Shot" metadata package and is paired with
a machine-checkable response schema that mirrors
:class:`~singleshot.models.AnalysisResult`, with every field required.

Example:
    >>> from singleshot.ai.prompts import get_prompt
    >>> template = get_prompt("single_shot_v1")
    >>> text = template.render(media_label="photograph")
    >>> schema = template.output_schema
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from string import Template
from typing import Any

from singleshot.models import MediaKind


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class PromptTemplate:
    """A versioned prompt with its expected output schema.

    Attributes:
        id: Unique identifier (e.g. "single_shot_v1").
        version: Version string for tracking changes.
        prompt_template: Prompt text with ``$placeholder`` variables.
        output_schema: Response schema in Gemini's OpenAPI subset.
        required_variables: Variables that must be provided to render.
        description: Human-readable purpose.
    """

    id: str
    version: str
    prompt_template: str
    output_schema: dict[str, Any] | None = None
    required_variables: set[str] = field(default_factory=set)
    description: str = ""

    def render(self, **variables: Any) -> str:
        """Render the prompt text.

        Raises:
            ValueError: If required variables are missing.
        """
        missing = sorted(self.required_variables - set(variables))
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")
        return Template(self.prompt_template).substitute(variables)


# =============================================================================
# Output Schema
# =============================================================================


TECHNICAL_PARAM_FIELDS = ["focalLength", "aperture", "iso", "shutterSpeed", "cameraType"]

RESULT_REQUIRED_FIELDS = [
    "title",
    "keywords",
    "lens",
    "atmosphere",
    "angle",
    "geometry",
    "visual_detail",
    "location",
    "technicalParams",
]

ANALYSIS_RESULT_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {
            "type": "STRING",
            "description": "Commercial title, max 10 words.",
        },
        "keywords": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "20-30 keywords.",
        },
        "lens": {
            "type": "STRING",
            "description": "Specific lens characteristics (coating, distortion, sharp/soft).",
        },
        "atmosphere": {
            "type": "STRING",
            "description": "Lighting physics and air quality.",
        },
        "angle": {
            "type": "STRING",
            "description": "Camera position and movement dynamics.",
        },
        "geometry": {
            "type": "STRING",
            "description": "Compositional structure.",
        },
        "location": {
            "type": "STRING",
            "description": "Environment estimation.",
        },
        "technicalParams": {
            "type": "OBJECT",
            "description": "Camera settings.",
            "properties": {name: {"type": "STRING"} for name in TECHNICAL_PARAM_FIELDS},
            "required": TECHNICAL_PARAM_FIELDS,
        },
        "visual_detail": {
            "type": "OBJECT",
            "description": "Detailed analysis.",
            "properties": {
                "visual_description": {
                    "type": "STRING",
                    "description": "MAX 700 WORDS. The detailed organic description.",
                },
                "visual_anchors": {
                    "type": "ARRAY",
                    "items": {"type": "STRING"},
                    "description": "Specific grounding elements (e.g. 'rust texture', 'lens flare').",
                },
                "subjects": {
                    "type": "ARRAY",
                    "items": {
                        "type": "OBJECT",
                        "properties": {
                            "name": {"type": "STRING"},
                            "description": {"type": "STRING"},
                            "features": {"type": "STRING"},
                        },
                        "required": ["name", "description", "features"],
                    },
                },
            },
            "required": ["visual_description", "visual_anchors", "subjects"],
        },
    },
    "required": RESULT_REQUIRED_FIELDS,
}


# =============================================================================
# Prompt Templates
# =============================================================================


SINGLE_SHOT_PROMPT = PromptTemplate(
    id="single_shot_v1",
    version="1.0.0",
    description="Single-call metadata package for one photo or video clip.",
    required_variables={"media_label"},
    output_schema=ANALYSIS_RESULT_SCHEMA,
    prompt_template=textwrap.dedent(
        """
        Analyze this $media_label as a Senior Cinematographer and Optical Physicist.

        **TASK**: Generate a cohesive "Single Shot" metadata package.

        **STRICT OUTPUT RULES**:
        1. **Title**: Concise, commercial, descriptive (Max 10 words).
        2. **Keywords**: 20-30 highly relevant tags covering Subject, Lighting, Lens, and Mood.
        3. **Visual Description (MAX 700 WORDS)**:
           - **Format**: A single, dense, coherent paragraph.
           - **Content**: You MUST integrate specific details about:
             - **LENS**: Focal length feel, bokeh character (swirly, creamy, cat-eye), optical imperfections (chromatic aberration, vignette, soft edges).
             - **ATMOSPHERE**: Air density, haze, dust particles, humidity, color temperature.
             - **ANGLE**: Camera height, tilt, roll, and (if video) movement physics (weight, parallax).
             - **GEOMETRY**: Leading lines, framing balance, aspect ratio feel.
           - **TONE**: 100% Organic and Raw. Avoid "AI-sounding" adjectives like "breathtaking" or "symphony". Describe the *physics of the light*.

        4. **Technical Estimates**: Best guess settings for Camera, Lens, Aperture, Shutter, ISO.
           All five of focalLength, aperture, iso, shutterSpeed and cameraType are mandatory.

        Return the result in strictly valid JSON format matching the schema.
        """
    ).strip(),
)


PROMPT_REGISTRY: dict[str, PromptTemplate] = {
    SINGLE_SHOT_PROMPT.id: SINGLE_SHOT_PROMPT,
}

DEFAULT_PROMPT_ID = SINGLE_SHOT_PROMPT.id


def get_prompt(prompt_id: str) -> PromptTemplate:
    """Look up a prompt template by id.

    Raises:
        KeyError: If the prompt is not registered.
    """
    if prompt_id not in PROMPT_REGISTRY:
        available = ", ".join(sorted(PROMPT_REGISTRY))
        raise KeyError(f"Unknown prompt '{prompt_id}'. Available: {available}")
    return PROMPT_REGISTRY[prompt_id]


def media_label(kind: MediaKind) -> str:
    """Wording used for the media in the prompt."""
    return "video clip" if kind == MediaKind.VIDEO else "photograph"


def build_analysis_prompt(kind: MediaKind, template: PromptTemplate | None = None) -> str:
    """Render an analysis prompt for a media kind, the single-shot one by default."""
    return (template or SINGLE_SHOT_PROMPT).render(media_label=media_label(kind))
