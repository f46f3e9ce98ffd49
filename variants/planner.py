import logging

from variants.classes import ConversionStrategy
from variants.constants import Constants
from variants.settings import Settings


class ConversionPlanner:
    """Decides which target formats an uploaded image is converted to."""

    def __init__(self):
        self._logger = logging.getLogger(__name__)

    def plan(self, mime_type: str, settings: Settings) -> list[ConversionStrategy]:
        # modern sources only get a universally decodable fallback
        if mime_type in Constants.MODERN_MIME_TYPES:
            return [self._strategy(Constants.FORMAT_PNG, settings)]

        if mime_type not in Constants.STANDARD_MIME_TYPES:
            self._logger.debug(f"Nothing to plan for mime type '{mime_type}'")
            return []

        strategies = []

        # order matches the preference used when writing <source> elements
        if settings.convert_to_avif:
            strategies.append(self._strategy(Constants.FORMAT_AVIF, settings))

        if settings.convert_to_webp:
            strategies.append(self._strategy(Constants.FORMAT_WEBP, settings))

        return strategies

    @staticmethod
    def _strategy(format: str, settings: Settings) -> ConversionStrategy:
        return ConversionStrategy(
            target_format=format,
            target_mime=Constants.mime_for_format(format),
            quality=settings.quality_for_format(format),
        )
