"""Provider registry: build the collaborator set from settings.

Usage:
    from lifepipe.services.providers.registry import get_providers

    providers = get_providers()
    url = await providers.image.generate([ref], prompt, ImageOptions())
"""

import logging
from typing import Optional

from lifepipe.config import Settings, settings as default_settings
from lifepipe.services.providers.base import (
    GenderClassifier,
    ImageSynthesizer,
    TransitionSynthesizer,
)

logger = logging.getLogger(__name__)


class Providers:
    """The three collaborators the pipeline depends on."""

    def __init__(
        self,
        image: ImageSynthesizer,
        transition: TransitionSynthesizer,
        classifier: Optional[GenderClassifier] = None,
    ):
        self.image = image
        self.transition = transition
        self.classifier = classifier

    async def close(self) -> None:
        await self.image.close()
        await self.transition.close()


def get_providers(settings: Settings | None = None) -> Providers:
    """Create providers for the configured backend.

    Mock providers when ``providers.mock`` is set; otherwise fal.ai for
    synthesis and, when a Google Cloud project is configured, Vertex AI for
    gender classification.

    Raises:
        ValueError: If fal.ai is selected but no API key is configured.
    """
    settings = settings or default_settings

    if settings.providers.mock:
        from lifepipe.services.providers.mock import (
            MockGenderClassifier,
            MockImageSynthesizer,
            MockTransitionSynthesizer,
        )

        logger.info("Using mock providers")
        return Providers(
            MockImageSynthesizer(),
            MockTransitionSynthesizer(),
            MockGenderClassifier(),
        )

    from lifepipe.services.providers.fal_client import (
        FalImageSynthesizer,
        FalTransitionSynthesizer,
        get_fal_client,
    )

    client = get_fal_client(settings.providers.fal_api_key)
    classifier: Optional[GenderClassifier] = None
    if settings.google_cloud.project_id:
        from lifepipe.services.providers.gender_classifier import VertexGenderClassifier

        classifier = VertexGenderClassifier(
            settings.models.gender_classifier,
            settings.pipeline.retry_max_attempts,
            cloud=settings.google_cloud,
        )
    else:
        logger.info("Google Cloud project not set; gender classification disabled")

    return Providers(
        FalImageSynthesizer(client, settings.models.image_edit),
        FalTransitionSynthesizer(client, settings.models.transition_video),
        classifier,
    )
