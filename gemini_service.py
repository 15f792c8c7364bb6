"""Gemini calls for face analysis and improved-image generation.

All model specific request shaping (schema, safety thresholds, prompt text)
lives here so the workflow never touches the SDK directly.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from google import genai
from google.genai import errors, types
from google.genai.types import Modality

from image_preprocessor import split_data_uri, to_data_uri
from settings import ANALYSIS_MODEL, ANALYSIS_TEMPERATURE, IMAGE_MODEL, TIMEOUT_MS
from system_prompt import ANALYSIS_PROMPT, GENERATION_PROMPT, HELLO_PROMPT

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = ["보통", "심함", "매우 심함"]
SEVERITY_ALIASES = {
    "Mild": "보통",
    "Moderate": "심함",
    "Severe": "매우 심함",
}

ANALYSIS_PERMISSION_MESSAGE = "API 권한이 거부되었습니다. API 키를 확인해주세요."
ANALYSIS_FAILED_MESSAGE = "이미지 분석에 실패했습니다. 다시 시도해주세요."
GENERATION_PERMISSION_MESSAGE = "API 권한이 없습니다. 유료 모델 사용이 가능한 API 키인지 확인해주세요."
GENERATION_FAILED_MESSAGE = "개선된 이미지 생성에 실패했습니다."
EMPTY_RESULT_MESSAGE = "이미지 생성 결과가 비어있습니다."


class AnalysisError(Exception):
    pass


class GenerationError(Exception):
    pass


class EmptyResult(GenerationError):
    """The call went through but no candidate carried image data."""

    def __init__(self, message=EMPTY_RESULT_MESSAGE):
        super().__init__(message)


def display_severity(severity):
    """Map the English severity variants onto the canonical Korean set."""
    return SEVERITY_ALIASES.get(severity, severity)


def format_number(value):
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class FaceBox:
    ymin: float
    xmin: float
    ymax: float
    xmax: float

    @classmethod
    def from_dict(cls, data):
        return cls(
            ymin=data.get("ymin"),
            xmin=data.get("xmin"),
            ymax=data.get("ymax"),
            xmax=data.get("xmax"),
        )

    def to_dict(self):
        return {"ymin": self.ymin, "xmin": self.xmin, "ymax": self.ymax, "xmax": self.xmax}


DEFAULT_FACE_BOX = FaceBox(ymin=100, xmin=200, ymax=900, xmax=800)


@dataclass(frozen=True)
class SkinCondition:
    condition: str
    severity: str
    description: str

    @classmethod
    def from_dict(cls, data):
        return cls(
            condition=data.get("condition"),
            severity=data.get("severity"),
            description=data.get("description"),
        )

    def to_dict(self):
        return {
            "condition": self.condition,
            "severity": self.severity,
            "description": self.description,
        }


@dataclass(frozen=True)
class SkinAnalysis:
    asymmetry_score: float
    asymmetry_description: str
    tilt_angle: float
    overall_score: float
    skin_conditions: Tuple[SkinCondition, ...] = ()
    face_box: Optional[FaceBox] = None

    @classmethod
    def from_dict(cls, data):
        """Build from the model's JSON object; absent keys come through as None."""
        if not isinstance(data, dict):
            raise ValueError("analysis result is not a JSON object")
        face_box = data.get("faceBox")
        return cls(
            asymmetry_score=data.get("asymmetryScore"),
            asymmetry_description=data.get("asymmetryDescription"),
            tilt_angle=data.get("tiltAngle"),
            overall_score=data.get("overallScore"),
            skin_conditions=tuple(
                SkinCondition.from_dict(c) for c in data.get("skinConditions") or []
            ),
            face_box=FaceBox.from_dict(face_box) if isinstance(face_box, dict) else None,
        )

    def to_dict(self):
        result = {
            "asymmetryScore": self.asymmetry_score,
            "asymmetryDescription": self.asymmetry_description,
            "tiltAngle": self.tilt_angle,
            "overallScore": self.overall_score,
            "skinConditions": [c.to_dict() for c in self.skin_conditions],
        }
        if self.face_box is not None:
            result["faceBox"] = self.face_box.to_dict()
        return result


ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "asymmetryScore": types.Schema(
            type=types.Type.NUMBER,
            description="0-100 score for symmetry (100 is perfect).",
        ),
        "asymmetryDescription": types.Schema(
            type=types.Type.STRING,
            description="Description of asymmetry in Korean.",
        ),
        "tiltAngle": types.Schema(
            type=types.Type.NUMBER,
            description="Head tilt angle in degrees (- for left, + for right).",
        ),
        "faceBox": types.Schema(
            type=types.Type.OBJECT,
            description="Bounding box of the face in 0-1000 scale.",
            properties={
                "ymin": types.Schema(type=types.Type.NUMBER),
                "xmin": types.Schema(type=types.Type.NUMBER),
                "ymax": types.Schema(type=types.Type.NUMBER),
                "xmax": types.Schema(type=types.Type.NUMBER),
            },
        ),
        "overallScore": types.Schema(
            type=types.Type.NUMBER,
            description="Overall skin health score 0-100.",
        ),
        "skinConditions": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "condition": types.Schema(
                        type=types.Type.STRING,
                        description="Condition name (e.g., 기미, 다크서클, 피부톤, 주름).",
                    ),
                    "severity": types.Schema(
                        type=types.Type.STRING,
                        enum=SEVERITY_LEVELS,
                    ),
                    "description": types.Schema(
                        type=types.Type.STRING,
                        description="Detailed diagnosis in Korean.",
                    ),
                },
            ),
        ),
    },
    required=["asymmetryScore", "asymmetryDescription", "tiltAngle", "skinConditions", "overallScore"],
)

SAFETY_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_NONE)
    for category in (
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    )
]


def make_client(api_key, timeout_ms=TIMEOUT_MS):
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=timeout_ms),
    )


def is_permission_error(error):
    if getattr(error, "code", None) == 403:
        return True
    text = str(error)
    return "403" in text or "Permission denied" in text


def strip_code_fence(text):
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```json\n?", "", text)
        text = re.sub(r"^```\n?", "", text)
        text = re.sub(r"\n?```$", "", text)
    return text


def parse_analysis(text):
    if not text:
        raise ValueError("AI 응답이 없습니다.")
    return SkinAnalysis.from_dict(json.loads(strip_code_fence(text)))


def build_generation_prompt(analysis):
    conditions = ", ".join(
        f"{c.condition} ({c.severity})" for c in analysis.skin_conditions
    )
    return GENERATION_PROMPT.format(
        tilt_angle=format_number(analysis.tilt_angle),
        asymmetry_description=analysis.asymmetry_description,
        conditions=conditions,
    )


class GeminiService:
    def __init__(self, client_factory=make_client,
                 analysis_model=ANALYSIS_MODEL, image_model=IMAGE_MODEL):
        self.client_factory = client_factory
        self.analysis_model = analysis_model
        self.image_model = image_model

    def test_credential(self, credential):
        """Send the cheapest prompt possible; True iff text comes back.

        API errors (bad key, no access) give False. Transport failures propagate.
        """
        client = self.client_factory(credential)
        try:
            response = client.models.generate_content(
                model=self.analysis_model, contents=HELLO_PROMPT,
            )
        except errors.APIError as e:
            logger.warning("API key test failed: %s", e)
            return False
        return bool(response.text)

    def analyze(self, image_data, credential):
        try:
            mime, raw_bytes = split_data_uri(image_data)
            client = self.client_factory(credential)
            config = types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=ANALYSIS_SCHEMA,
                temperature=ANALYSIS_TEMPERATURE,
                safety_settings=SAFETY_SETTINGS,
            )
            response = client.models.generate_content(
                model=self.analysis_model,
                contents=[types.Part.from_bytes(data=raw_bytes, mime_type=mime), ANALYSIS_PROMPT],
                config=config,
            )
            return parse_analysis(response.text)
        except Exception as e:
            logger.error("Analysis failed: %s", e)
            if is_permission_error(e):
                raise AnalysisError(ANALYSIS_PERMISSION_MESSAGE) from e
            raise AnalysisError(ANALYSIS_FAILED_MESSAGE) from e

    def generate(self, image_data, analysis, credential):
        try:
            mime, raw_bytes = split_data_uri(image_data)
            client = self.client_factory(credential)
            config = types.GenerateContentConfig(
                response_modalities=[Modality.TEXT, Modality.IMAGE],
            )
            response = client.models.generate_content(
                model=self.image_model,
                contents=[
                    types.Part.from_bytes(data=raw_bytes, mime_type=mime),
                    build_generation_prompt(analysis),
                ],
                config=config,
            )
            return extract_image(response)
        except GenerationError:
            raise
        except Exception as e:
            logger.error("Generation failed: %s", e)
            if is_permission_error(e):
                raise GenerationError(GENERATION_PERMISSION_MESSAGE) from e
            raise GenerationError(GENERATION_FAILED_MESSAGE) from e


def extract_image(response):
    """Return the first inline image of the first candidate as a data URI."""
    candidates = response.candidates or []
    if candidates and candidates[0].content:
        for part in candidates[0].content.parts or []:
            if part.inline_data and part.inline_data.data:
                mime = part.inline_data.mime_type or "image/png"
                return to_data_uri(part.inline_data.data, mime)
    raise EmptyResult()
