"""
core/catalog.py -- Loader for the static downstream application catalog.

The catalog is a JSON document, either a bare list of app objects or
{"apps": [...]}. Order in the file is the order users see. Loaded once at
process start; the core treats the result as read-only.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from core.models import APP_SLUG_PATTERN, AppEntry

logger = logging.getLogger("appgate.catalog")

_SLUG_RE = re.compile(APP_SLUG_PATTERN)
_KNOWN_KEYS = {"slug", "url", "name", "description", "icon"}


class CatalogError(ValueError):
    """Raised when the catalog file is missing, malformed, or inconsistent."""


def parse_catalog(raw: object) -> list[AppEntry]:
    """Validate decoded catalog JSON and return AppEntry objects in file order."""
    items = raw.get("apps") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise CatalogError("Catalog must be a list of apps or an object with an 'apps' list.")

    seen: set[str] = set()
    entries: list[AppEntry] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise CatalogError(f"Catalog entry #{index} is not an object.")
        slug = str(item.get("slug") or "").strip()
        url = str(item.get("url") or "").strip()
        if not slug or not url:
            raise CatalogError(f"Catalog entry #{index} needs both 'slug' and 'url'.")
        if not _SLUG_RE.match(slug):
            raise CatalogError(f"Catalog slug {slug!r} is not a valid identifier.")
        if slug in seen:
            raise CatalogError(f"Duplicate catalog slug {slug!r}.")
        seen.add(slug)
        entries.append(
            AppEntry(
                slug=slug,
                url=url,
                name=str(item.get("name") or slug),
                description=str(item.get("description") or ""),
                icon=str(item.get("icon") or ""),
                extra={k: v for k, v in item.items() if k not in _KNOWN_KEYS},
            )
        )
    return entries


def load_catalog(path: str | Path) -> list[AppEntry]:
    """Read and validate the catalog file at path."""
    catalog_path = Path(path)
    try:
        raw = json.loads(catalog_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CatalogError(f"Could not read app catalog '{catalog_path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CatalogError(f"App catalog '{catalog_path}' is not valid JSON: {exc}") from exc
    entries = parse_catalog(raw)
    logger.info("App catalog loaded (%d apps) from %s", len(entries), catalog_path)
    return entries


def find_app(catalog: list[AppEntry], slug: str) -> AppEntry | None:
    for entry in catalog:
        if entry.slug == slug:
            return entry
    return None
