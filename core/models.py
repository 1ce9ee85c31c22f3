from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Slugs are lowercase identifiers used in URLs and entitlement rows.
APP_SLUG_PATTERN = r"^[a-z0-9][a-z0-9_-]{0,63}$"


@dataclass(frozen=True)
class AppEntry:
    """One downstream application in the gateway catalog.

    The catalog is loaded once at startup and never mutated. extra keeps any
    display metadata the catalog author added beyond the known fields.
    """

    slug: str
    url: str
    name: str = ""
    description: str = ""
    icon: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
