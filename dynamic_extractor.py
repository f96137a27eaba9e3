import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from playwright.async_api import async_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from config import (
    BROWSER_NAV_TIMEOUT_MS, BROWSER_SCROLL_SETTLE_MS, BROWSER_SETTLE_MS, BROWSER_VIEWPORT,
    DESKTOP_USER_AGENT, MIN_RENDERED_AREA,
)
from image_set import ImageSet, StageReport
from static_extractor import last_srcset_url

logger = logging.getLogger(__name__)


# Snapshot of what the rendered page shows: og:image plus every <img> with its on-screen box
RENDERED_IMAGES_JS = r"""() => {
    const meta = document.querySelector('meta[property="og:image"], meta[name="og:image"]');
    const images = Array.from(document.querySelectorAll('img')).map(img => {
        const r = img.getBoundingClientRect();
        return {
            src: img.currentSrc || img.getAttribute('src') || '',
            srcset: img.getAttribute('srcset') || '',
            width: r.width || 0,
            height: r.height || 0,
        };
    });
    return { ogImage: meta ? meta.getAttribute('content') : null, images };
}"""

SCROLL_TO_MIDDLE_JS = "() => window.scrollTo(0, (document.body ? document.body.scrollHeight : 0) / 2)"


@asynccontextmanager
async def rendered_page(user_agent: str = DESKTOP_USER_AGENT,
                        viewport: Optional[Dict[str, int]] = None) -> AsyncIterator[Any]:
    """
    Headless Chromium page scoped to the block.

    The context and the browser process are closed on every way out of the
    block, including errors, timeouts and task cancellation.
    """
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=True)
        try:
            context = await browser.new_context(
                user_agent=user_agent,
                viewport=viewport or BROWSER_VIEWPORT,
            )
            try:
                page = await context.new_page()
                yield page
            finally:
                await context.close()
        finally:
            await browser.close()


def collect_rendered_candidates(snapshot: Dict[str, Any], page_url: str, images: ImageSet,
                                min_area: float = MIN_RENDERED_AREA) -> int:
    """
    Add rendered-DOM candidates: og:image first, then visible <img> elements
    largest first (bigger on screen is more likely the product shot).
    """
    before = len(images)
    if not isinstance(snapshot, dict):
        return 0

    og_image = snapshot.get('ogImage')
    if og_image:
        images.add(og_image, page_url, source='rendered-og')

    sized = []
    for element in snapshot.get('images') or []:
        if not isinstance(element, dict):
            continue
        try:
            area = float(element.get('width') or 0) * float(element.get('height') or 0)
        except (TypeError, ValueError):
            continue
        if area > min_area:
            sized.append((area, element))
    # stable sort keeps document order between equally sized elements
    sized.sort(key=lambda pair: pair[0], reverse=True)

    for _, element in sized:
        images.add(element.get('src'), page_url, source='rendered-img')
        widest = last_srcset_url(element.get('srcset') or '')
        if widest:
            images.add(widest, page_url, source='rendered-srcset')
    return len(images) - before


class DynamicExtractor:
    """Render the page in a real browser and read images from the live DOM."""

    name = 'dynamic'

    def __init__(self,
                 nav_timeout_ms: int = BROWSER_NAV_TIMEOUT_MS,
                 settle_ms: int = BROWSER_SETTLE_MS,
                 scroll_settle_ms: int = BROWSER_SCROLL_SETTLE_MS,
                 min_area: float = MIN_RENDERED_AREA):
        self.nav_timeout_ms = nav_timeout_ms
        self.settle_ms = settle_ms
        self.scroll_settle_ms = scroll_settle_ms
        self.min_area = min_area

    async def extract(self, page_url: str, images: ImageSet) -> StageReport:
        try:
            snapshot, final_url = await self._render(page_url)
        except (PlaywrightError, OSError, NotImplementedError) as e:
            # Missing browser binary, sandbox restrictions, unreachable page...
            logger.warning(f"Rendered extraction unavailable for {page_url}: {e}")
            return StageReport(self.name)
        added = collect_rendered_candidates(snapshot, final_url or page_url, images, self.min_area)
        logger.info(f"[{self.name}] {added} new candidates from rendered {page_url}")
        return StageReport(self.name, added=added)

    async def _render(self, page_url: str) -> Tuple[Dict[str, Any], str]:
        async with rendered_page() as page:
            try:
                await page.goto(page_url, wait_until='networkidle', timeout=self.nav_timeout_ms)
            except PlaywrightTimeoutError:
                logger.warning(f"{page_url} did not go idle within {self.nav_timeout_ms} ms, using what rendered")
            await page.wait_for_timeout(self.settle_ms)
            # one scroll to the middle wakes most lazy loaders
            await page.evaluate(SCROLL_TO_MIDDLE_JS)
            await page.wait_for_timeout(self.scroll_settle_ms)
            snapshot = await page.evaluate(RENDERED_IMAGES_JS)
            return snapshot, page.url
