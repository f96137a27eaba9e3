import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from url_rules import is_candidate, normalize_image_url, upgrade_resolution

logger = logging.getLogger(__name__)


@dataclass
class ImageSet:
    """
    Ordered, deduplicated candidates collected during one scrape run.

    Insertion order is discovery priority. Dedup is keyed on the normalized,
    resolution-upgraded form, so the same photo reached through different
    signals (og:image, JSON-LD, srcset...) is kept once.
    """
    urls: List[str] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)
    sources: Dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.urls)

    def add(self, raw: Optional[str], base_url: str, source: str = '') -> Optional[str]:
        """
        Run a raw match through normalize -> filter -> upgrade -> dedup.

        Returns the stored URL, or None when the match was dropped at any stage.
        """
        absolute = normalize_image_url(raw, base_url)
        if absolute is None:
            return None
        if not is_candidate(absolute):
            logger.debug(f"Rejected by filter ({source}): {absolute[:120]}")
            return None
        upgraded = upgrade_resolution(absolute)
        if upgraded in self.seen:
            return None
        self.seen.add(upgraded)
        self.urls.append(upgraded)
        self.sources[upgraded] = source
        return upgraded

    def capped(self, limit: int) -> List[str]:
        return self.urls[:limit]


@dataclass
class StageReport:
    """What one extraction stage contributed to a run."""
    stage: str
    added: int = 0
    client_rendered: bool = False
