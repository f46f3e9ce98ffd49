import copy
import logging
from typing import Callable, Iterable, Optional
from urllib.parse import quote, urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

from variants.catalog import Catalog
from variants.classes import CatalogRecord, SourceId
from variants.constants import Constants
from variants.utils.filename import FilenameUtils

# HTML void elements without the XHTML slash, only &, < and > escaped
FRAGMENT_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)

UrlResolver = Callable[[str], Optional[SourceId]]


class MarkupRewriter:
    """
    Replaces <img> elements whose source has recorded variants with a <picture> element.

    Every alternative format gets a <source> with a width-ordered srcset, the original
    element becomes the fallback <img>. Images without a catalog record are left as they are.
    """

    PROCESSED_ATTRIBUTE = "data-original-src"
    ADAPTIVE_ATTRIBUTE = "data-adaptive"

    def __init__(
        self,
        *,
        catalog: Catalog,
        resolver: UrlResolver,
        enabled_formats: Iterable[str] = Constants.FORMAT_PRIORITY,
        lazy_load: bool = True,
        enabled: bool = True,
    ):
        self._logger = logging.getLogger(__name__)
        self._catalog = catalog
        self._resolver = resolver
        self._enabled_formats = frozenset(enabled_formats)
        self._lazy_load = lazy_load
        self._enabled = enabled

    @property
    def enabled_formats(self) -> frozenset[str]:
        return self._enabled_formats

    def is_enabled(self) -> bool:
        return self._enabled

    def process_content(self, content: str) -> str:
        return self.rewrite(content)

    def rewrite(self, html: str) -> str:
        if not html:
            return html

        try:
            soup = BeautifulSoup(html, "html.parser")
        except ParserRejectedMarkup:
            self._logger.warning("Markup could not be parsed, leaving it unchanged")
            return html

        rewritten = 0
        for image in soup.find_all("img"):
            try:
                if self._rewrite_image(soup, image):
                    rewritten += 1
            except ValueError:
                self._logger.debug(
                    f"Leaving image '{image.get('src')}' untouched", exc_info=True
                )

        if not rewritten:
            return html

        self._logger.debug(f"Rewrote {rewritten} images")
        return soup.decode(formatter=FRAGMENT_FORMATTER)

    def _rewrite_image(self, soup: BeautifulSoup, image: Tag) -> bool:
        src = (image.get("src") or "").strip()

        if (
            not src
            or src.startswith("data:")
            or image.find_parent("picture") is not None
            or image.has_attr(self.PROCESSED_ATTRIBUTE)
        ):
            return False

        source_id = self._resolver(src)
        if source_id is None:
            return False

        record = self._get_record(source_id)
        if record is None or not record.sizes:
            return False

        original_format = FilenameUtils.get_format(urlparse(src).path)

        picture = soup.new_tag("picture")
        for format in self.format_priority(record, original_format):
            srcset = self.build_srcset(src, record, format)
            if not srcset:
                continue

            _, entry = record.sizes_with_format(format)[0]
            picture.append(
                soup.new_tag(
                    "source",
                    attrs={
                        "type": entry.mime_type,
                        "srcset": srcset,
                        "sizes": Constants.STANDARD_SIZES,
                    },
                )
            )

        picture.append(self._fallback_image(image, src, record, original_format))
        image.replace_with(picture)
        return True

    def format_priority(self, record: CatalogRecord, original_format: str) -> list[str]:
        """
        Formats to offer as <source> elements, most preferred first.

        The preferred modern formats come first where they are enabled, followed by every
        other recorded format. The element's own format is left to the fallback <img>
        unless it is one of the preferred formats.
        """
        available = record.available_formats()
        priority = [
            format
            for format in Constants.FORMAT_PRIORITY
            if format in self._enabled_formats and format in available
        ]

        for format in sorted(available):
            if (
                format not in priority
                and format != original_format
                and format not in Constants.FORMAT_PRIORITY
            ):
                priority.append(format)

        return priority

    @staticmethod
    def build_srcset(src: str, record: CatalogRecord, format: str) -> str:
        candidates = []
        seen_widths = set()

        for size, entry in record.sizes_with_format(format):
            if size.width <= 0 or size.width in seen_widths:
                continue
            seen_widths.add(size.width)
            # spaces and commas would split the srcset candidate
            candidates.append(f"{urljoin(src, quote(entry.file))} {size.width}w")

        return ", ".join(candidates)

    def _fallback_image(
        self, image: Tag, src: str, record: CatalogRecord, original_format: str
    ) -> Tag:
        fallback = copy.copy(image)
        del fallback["srcset"]
        del fallback["sizes"]

        fallback["src"] = src
        srcset = self.build_srcset(src, record, original_format)
        if srcset:
            fallback["srcset"] = srcset
            fallback["sizes"] = Constants.STANDARD_SIZES

        if self._lazy_load:
            fallback["loading"] = "lazy"
        fallback["decoding"] = "async"
        fallback[self.PROCESSED_ATTRIBUTE] = src
        fallback[self.ADAPTIVE_ATTRIBUTE] = "true"

        return fallback

    def _get_record(self, source_id: SourceId) -> Optional[CatalogRecord]:
        try:
            return self._catalog.get(source_id)
        except ValueError:
            self._logger.debug(f"Ignoring malformed catalog record of '{source_id}'")
            return None
