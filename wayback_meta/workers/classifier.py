"""Client for the external text-classification service.

Speaks the OpenAI-compatible chat-completions protocol.  The reply is
validated against a closed label set; this module never raises on
service or network failure, it returns ``None`` instead.
"""

from __future__ import annotations

import logging

import httpx

from wayback_meta.core.categories import ALLOWED_LABELS, CLASSIFIER_PROMPT, SUSPECT_LABEL
from wayback_meta.core.config import settings
from wayback_meta.workers.fetcher import get_http_client

logger = logging.getLogger(__name__)


def build_prompt(title: str, description: str, domain: str) -> str:
    return CLASSIFIER_PROMPT.format(
        title=title, description=description or "N/A", domain=domain
    )


def coerce_label(reply: str) -> str:
    """Map a free-text reply onto ``ALLOWED_LABELS``; unknown replies become suspect."""
    label = reply.strip().strip('"').strip()
    return label if label in ALLOWED_LABELS else SUSPECT_LABEL


async def request_category(
    title: str,
    description: str,
    domain: str,
    credential: str,
) -> str | None:
    """Ask the external classifier for a category label.

    Returns ``None`` when there is nothing to classify, when the service
    fails, or when it answers with an empty reply.
    """
    if not credential or not title:
        return None

    http = get_http_client()
    try:
        response = await http.post(
            settings.classifier_api_url,
            headers={"Authorization": f"Bearer {credential}"},
            json={
                "model": settings.classifier_model,
                "messages": [
                    {"role": "user", "content": build_prompt(title, description, domain)}
                ],
                "temperature": 0.1,
                "max_tokens": 50,
            },
            timeout=settings.classifier_timeout,
        )
    except httpx.HTTPError as exc:
        logger.warning("Classifier request failed for %s: %s", domain, exc)
        return None

    if not response.is_success:
        logger.warning("Classifier answered HTTP %s for %s", response.status_code, domain)
        return None

    try:
        reply = response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        logger.warning("Unreadable classifier reply for %s: %s", domain, exc)
        return None

    if not isinstance(reply, str) or not reply.strip():
        return None
    return coerce_label(reply)
