from rentals.config import settings
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.user_domain import Language

logger = get_logger(__name__)


class LanguagePreference:
    """Current UI language; follows the signed-in user's profile."""

    def __init__(self, default: Language | None = None):
        self.current: Language = default or settings.DEFAULT_LANGUAGE

    def set(self, language: Language) -> None:
        if language != self.current:
            logger.info("Language changed", language=language, previous=self.current)
        self.current = language
