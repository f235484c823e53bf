"""Per-adapter request validation schemas.

Each adapter may name one of the ``*Request`` models below as its
``validation_schema``. Parsing applies defaults; parameters that a schema
does not declare are kept as-is so provider-specific extras still reach the
adapter.
"""

from __future__ import annotations

import re
from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROMPT_MAX_LENGTH = 2000

AspectRatio = Literal["1:1", "4:3", "3:4", "16:9", "9:16", "21:9", "9:21"]

_SIZE_RE = re.compile(r"^\d+x\d+$")
_IMAGE_DATA_URI_RE = re.compile(r"^data:image/(png|jpeg|jpg|webp|gif);base64,")


def is_image_reference(value: str) -> bool:
    """True for http(s) URLs and base64 image data URIs."""
    if value.startswith(("http://", "https://")):
        return len(value.split("://", 1)[1]) > 0
    return bool(_IMAGE_DATA_URI_RE.match(value))


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

class _Params(BaseModel):
    model_config = ConfigDict(extra="allow")


class _SizedParams(_Params):
    size_or_ratio: str | None = None

    @field_validator("size_or_ratio")
    @classmethod
    def _check_size(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if v in get_args(AspectRatio) or _SIZE_RE.match(v):
            return v
        raise ValueError("Size must be an aspect ratio (e.g. 16:9) or widthxheight (e.g. 1024x1024)")


class BaseGenerationRequest(BaseModel):
    """Common envelope: non-empty prompt, image references, 1-10 outputs."""

    prompt: str = Field(min_length=1, max_length=PROMPT_MAX_LENGTH)
    input_images: list[str] = Field(default_factory=list)
    number_of_outputs: int = Field(default=1, ge=1, le=10)
    parameters: _Params = Field(default_factory=_Params)

    @field_validator("prompt")
    @classmethod
    def _check_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt must not be blank")
        return v

    @field_validator("input_images")
    @classmethod
    def _check_images(cls, v: list[str]) -> list[str]:
        for item in v:
            if not is_image_reference(item):
                raise ValueError("Must be a valid URL or base64 data URI")
        return v


# ---------------------------------------------------------------------------
# Image adapters
# ---------------------------------------------------------------------------

class FluxParams(_SizedParams):
    seed: int | None = Field(default=None, ge=0)
    prompt_upsampling: bool | None = None
    safety_tolerance: float | None = Field(default=None, ge=0, le=6)


class FluxRequest(BaseGenerationRequest):
    parameters: FluxParams = Field(default_factory=FluxParams)


class TuziOpenAIParams(_SizedParams):
    seed: int | None = Field(default=None, ge=0)
    n: int | None = Field(default=None, ge=1, le=10)
    quality: Literal["standard", "hd"] | None = None
    style: Literal["vivid", "natural"] | None = None


class TuziOpenAIRequest(BaseGenerationRequest):
    parameters: TuziOpenAIParams = Field(default_factory=TuziOpenAIParams)


# ---------------------------------------------------------------------------
# Video adapters
# ---------------------------------------------------------------------------

class KlingParams(_SizedParams):
    duration: Literal[5, 10] = 5
    mode: Literal["standard", "pro"] = "pro"


class KlingRequest(BaseGenerationRequest):
    parameters: KlingParams = Field(default_factory=KlingParams)


class PolloParams(_Params):
    duration: int = Field(default=8, ge=1, le=30)
    generateAudio: bool = True
    negative_prompt: str | None = None
    seed: int | None = Field(default=None, ge=0)


class PolloRequest(BaseGenerationRequest):
    parameters: PolloParams = Field(default_factory=PolloParams)


class PolloKlingParams(_Params):
    duration: Literal[5, 10] = 5
    strength: int = Field(default=50, ge=0, le=100)
    negative_prompt: str | None = None


class PolloKlingRequest(BaseGenerationRequest):
    parameters: PolloKlingParams = Field(default_factory=PolloKlingParams)


class ReplicateParams(_Params):
    duration: int | None = Field(default=None, ge=1, le=30)
    aspect_ratio: Literal["16:9", "9:16", "1:1"] | None = None
    seed: int | None = Field(default=None, ge=0)


class ReplicateRequest(BaseGenerationRequest):
    parameters: ReplicateParams = Field(default_factory=ReplicateParams)


class MidjourneyVideoRequest(BaseGenerationRequest):
    """Video from an existing image; the prompt may be empty."""

    prompt: str = Field(default="", max_length=PROMPT_MAX_LENGTH)
    input_images: list[str] = Field(min_length=1)

    @field_validator("prompt")
    @classmethod
    def _check_prompt(cls, v: str) -> str:
        return v
