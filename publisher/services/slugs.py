from __future__ import annotations

import re
import unicodedata

from publisher.config import settings
from publisher.services.hashing import short_hash

SLUG_BASE_MAX_LENGTH = 40
SLUG_FALLBACK = "game"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def _strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def generate_slug(name: str | None, project_id: str) -> str:
    """
    Deterministic public slug: normalized name plus a short hash of the project id,
    so two projects with the same name never share a slug.
    """
    base = _strip_diacritics((name or "").lower())
    base = _NON_ALNUM_RE.sub("-", base).strip("-")
    base = base[:SLUG_BASE_MAX_LENGTH].rstrip("-") or SLUG_FALLBACK
    return f"{base}-{short_hash(project_id)}"


def subdomain_url(slug: str) -> str:
    return f"https://{slug}.{settings.PLATFORM_DOMAIN}"
