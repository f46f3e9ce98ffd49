import logging
from typing import Iterable, Protocol, runtime_checkable


@runtime_checkable
class ContentFilter(Protocol):
    def process_content(self, content: str) -> str: ...

    def is_enabled(self) -> bool: ...


class ContentPipeline:
    """Runs an HTML fragment through every enabled filter, in the order they were given."""

    def __init__(self, filters: Iterable[ContentFilter] = ()):
        self._logger = logging.getLogger(__name__)
        self._filters: list[ContentFilter] = list(filters)

    def add(self, content_filter: ContentFilter) -> "ContentPipeline":
        self._filters.append(content_filter)
        return self

    @property
    def filters(self) -> list[ContentFilter]:
        return list(self._filters)

    def apply(self, content: str) -> str:
        if not content:
            return content

        for content_filter in self._filters:
            if not content_filter.is_enabled():
                self._logger.debug(
                    f"Skipping disabled filter {type(content_filter).__name__}"
                )
                continue
            content = content_filter.process_content(content)

        return content
