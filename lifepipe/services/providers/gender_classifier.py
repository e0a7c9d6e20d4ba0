"""Vertex AI gender classifier.

Uses Gemini structured output (response_schema) on the first generated
portrait so later prompts can keep the subject's presentation consistent.
Authentication goes through Application Default Credentials.
"""

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from google import genai
from google.genai import types as genai_types
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lifepipe.config import GoogleCloudConfig, settings
from lifepipe.services.providers.base import GenderClassifier, GenderPrediction
from lifepipe.services.providers.data_urls import mime_type_for

logger = logging.getLogger(__name__)

# GOOGLE_APPLICATION_CREDENTIALS may live in .env
load_dotenv()

GENDER_PROMPT = (
    "Look at the person in this portrait. Classify their apparent gender "
    "presentation as 'male' or 'female'. Answer 'unknown' if the image is "
    "ambiguous or shows no single clear person. Report a confidence 0.0-1.0."
)

# Preview models only served from the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
}


class VertexGenderClassifier(GenderClassifier):
    """Gender classifier backed by Google Vertex AI (google-genai SDK).

    One genai client is created lazily per Vertex location.

    Raises:
        ValueError: On construction, if no Google Cloud project is configured.
    """

    def __init__(
        self,
        model_id: str | None = None,
        max_retries: int | None = None,
        cloud: Optional[GoogleCloudConfig] = None,
    ) -> None:
        self._cloud = cloud or settings.google_cloud
        if not self._cloud.project_id:
            raise ValueError(
                "Google Cloud project not configured. Set LIFEPIPE_GOOGLE_CLOUD__PROJECT_ID."
            )
        self._model_id = model_id or settings.models.gender_classifier
        self._max_retries = max_retries or settings.pipeline.retry_max_attempts
        self._clients: dict[str, genai.Client] = {}

    @property
    def location(self) -> str:
        if self._model_id in GLOBAL_REGION_MODELS:
            return "global"
        return self._cloud.location

    def _client(self) -> genai.Client:
        location = self.location
        if location not in self._clients:
            logger.info(f"Creating Vertex AI client ({self._cloud.project_id}, {location})")
            self._clients[location] = genai.Client(
                vertexai=True,
                project=self._cloud.project_id,
                location=location,
            )
        return self._clients[location]

    async def predict(self, image_path: Path) -> GenderPrediction:
        image_bytes = image_path.read_bytes()

        @retry(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> GenderPrediction:
            image_part = genai_types.Part.from_bytes(
                data=image_bytes,
                mime_type=mime_type_for(image_path),
            )
            config = genai_types.GenerateContentConfig(
                temperature=0.0,
                response_mime_type="application/json",
                response_schema=GenderPrediction,
            )
            response = await self._client().aio.models.generate_content(
                model=self._model_id,
                contents=[image_part, GENDER_PROMPT],
                config=config,
            )
            return GenderPrediction.model_validate_json(response.text)

        prediction = await _call()
        logger.info(
            f"Gender prediction for {image_path.name}: "
            f"{prediction.gender_hint} ({prediction.confidence:.2f})"
        )
        return prediction
