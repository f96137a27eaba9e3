import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from config import ESCALATION_THRESHOLD, MAX_IMAGES
from dynamic_extractor import DynamicExtractor
from image_set import ImageSet
from static_extractor import MobileStaticExtractor, StaticExtractor
from url_rules import normalize_page_url

logger = logging.getLogger(__name__)


@dataclass
class ScrapeResult:
    page_url: str
    images: List[str] = field(default_factory=list)
    total_found: int = 0  # before the cap
    stages: List[str] = field(default_factory=list)


def default_strategies(use_browser: bool = True) -> list:
    """Cascade order: desktop HTML, mobile HTML, then a rendered browser."""
    strategies = [StaticExtractor(), MobileStaticExtractor()]
    if use_browser:
        strategies.append(DynamicExtractor())
    return strategies


class ImageScraper:
    """
    Runs extraction strategies in order over one shared, run-scoped ImageSet.

    The first strategy always runs. Each later one runs only while fewer than
    `threshold` candidates have been found, or, for rendering strategies, when
    an earlier stage reported the page looks client-rendered. A failing stage
    contributes nothing and never aborts the run.
    """

    def __init__(self, strategies: Optional[Sequence] = None,
                 threshold: int = ESCALATION_THRESHOLD,
                 max_images: int = MAX_IMAGES):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.threshold = threshold
        self.max_images = max_images

    def _should_run(self, strategy, found: int, needs_render: bool) -> bool:
        if found < self.threshold:
            return True
        return needs_render and isinstance(strategy, DynamicExtractor)

    async def scrape(self, page_url: str) -> ScrapeResult:
        images = ImageSet()
        result = ScrapeResult(page_url=page_url)
        needs_render = False

        for index, strategy in enumerate(self.strategies):
            if index > 0 and not self._should_run(strategy, len(images), needs_render):
                continue
            if index > 0:
                logger.info(f"Escalating to '{strategy.name}' for {page_url} ({len(images)} candidates so far)")
            result.stages.append(strategy.name)
            try:
                report = await strategy.extract(page_url, images)
            except Exception as e:
                logger.warning(f"Stage '{strategy.name}' failed for {page_url}: {e}")
                continue
            needs_render = needs_render or report.client_rendered

        result.total_found = len(images)
        result.images = images.capped(self.max_images)
        logger.info(f"Found {result.total_found} images for {page_url} "
                    f"(returning {len(result.images)}, stages: {', '.join(result.stages)})")
        return result


async def scrape_page_images(page_url: str, use_browser: bool = True) -> ScrapeResult:
    """
    Normalize the page URL and run the default cascade.

    Raises:
        InvalidPageUrl: for a missing or unparseable page URL
    """
    url = normalize_page_url(page_url)
    return await ImageScraper(default_strategies(use_browser)).scrape(url)
