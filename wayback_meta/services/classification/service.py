from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from functools import lru_cache

from wayback_meta.core.categories import (
    CATEGORY_KEYWORDS,
    CLEAN_LABEL,
    LEGITIMATE_PATTERNS,
    SUSPICIOUS_CATEGORIES,
)
from wayback_meta.core.config import settings
from wayback_meta.workers.classifier import request_category

logger = logging.getLogger(__name__)

_LEGITIMATE_RE = [re.compile(p, re.IGNORECASE) for p in LEGITIMATE_PATTERNS]


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # Short keywords only count as whole words ("bet" must not hit "alphabet").
    escaped = re.escape(keyword.lower())
    if len(keyword) <= 3:
        return re.compile(rf"\b{escaped}\b")
    return re.compile(escaped)


def is_legitimate_domain(domain: str) -> bool:
    return any(p.search(domain) for p in _LEGITIMATE_RE)


def classify_heuristic(domain: str, title: str = "", description: str = "") -> str:
    """Deterministic keyword classification of a domain and its page text.

    A legitimate-looking domain is ``Clean`` regardless of keywords;
    otherwise the first category (in table order) with a keyword hit wins.
    """
    if is_legitimate_domain(domain):
        return CLEAN_LABEL

    text = f"{domain} {title} {description}".lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(_keyword_pattern(k).search(text) for k in keywords):
            return category
    return CLEAN_LABEL


def is_suspicious(label: str | None) -> bool:
    return label in SUSPICIOUS_CATEGORIES


@dataclass(frozen=True)
class Classification:
    heuristic: str
    refined: str | None = None

    @property
    def category(self) -> str:
        """The displayed label: the external label when present, else the heuristic one."""
        return self.refined or self.heuristic

    @property
    def suspicious(self) -> bool:
        return is_suspicious(self.category)


class ClassificationEngine:
    """Two-tier labelling: local heuristic, optionally refined by the remote classifier."""

    async def classify(
        self,
        domain: str,
        title: str,
        description: str = "",
        credential: str | None = None,
    ) -> Classification:
        heuristic = classify_heuristic(domain, title, description)
        if not credential:
            return Classification(heuristic=heuristic)

        refined = await request_category(title, description, domain, credential)
        # Pace consecutive calls to the external service.
        await asyncio.sleep(settings.classifier_delay)
        if refined is None:
            logger.debug("No external label for %s, keeping %s", domain, heuristic)
        return Classification(heuristic=heuristic, refined=refined)
