"""Boundary to the external code and social-link scrapers.

The scrapers themselves live outside this project.  The functions here return
empty results so the admin workflows keep functioning; callers inject a real
aggregator through the ``aggregator``/``scraper`` parameters.
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence, Union

logger = logging.getLogger(__name__)

SOCIAL_LINK_FIELDS: tuple[str, ...] = ("roblox", "community", "discord", "twitter", "youtube")

ExpiredCodeEntry = Union[str, Mapping[str, Any]]


def _coerce_optional_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


@dataclass
class ScrapedCode:
    """A candidate code reported by one source for one reconciliation pass."""

    code: str
    status: str = "active"
    rewards_text: str | None = None
    level_requirement: int | None = None
    is_new: bool | None = None
    provider_priority: int = 0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ScrapedCode":
        """Build a candidate from snake_case or camelCase keys."""

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in payload:
                    return payload[key]
            return None

        raw_code = pick("code")
        is_new = pick("is_new", "isNew")
        return cls(
            code=raw_code if isinstance(raw_code, str) else "",
            status=str(pick("status") or "active"),
            rewards_text=pick("rewards_text", "rewardsText"),
            level_requirement=_coerce_optional_int(
                pick("level_requirement", "levelRequirement")
            ),
            is_new=None if is_new is None else bool(is_new),
            provider_priority=max(
                0,
                _coerce_optional_int(pick("provider_priority", "providerPriority")) or 0,
            ),
        )


@dataclass
class ScrapeResult:
    codes: list[ScrapedCode] = field(default_factory=list)
    expired_codes: list[ExpiredCodeEntry] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def coerce(cls, value: Any) -> "ScrapeResult":
        """Return ``value`` as a :class:`ScrapeResult`.

        Mappings may use ``expired_codes`` or ``expiredCodes``.  Anything else
        raises ``TypeError``.
        """

        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise TypeError(
                f"Aggregator returned {type(value).__name__}, expected a scrape result"
            )
        expired = value.get("expired_codes")
        if expired is None:
            expired = value.get("expiredCodes")
        errors = value.get("errors")
        return cls(
            codes=list(value.get("codes") or []),
            expired_codes=list(expired or []),
            errors=[str(error) for error in errors or []],
        )


@dataclass
class SocialLinksResult:
    links: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


SourceAggregator = Callable[[Sequence[str]], ScrapeResult]
SocialLinkScraper = Callable[[Sequence[str]], SocialLinksResult]


def scrape_sources(sources: Sequence[str]) -> ScrapeResult:
    """Return candidate and expired codes published at ``sources``."""

    logger.debug("No code scraper configured; %d source(s) skipped", len(sources))
    return ScrapeResult()


def scrape_social_links_from_sources(sources: Sequence[str]) -> SocialLinksResult:
    """Return social links (Roblox, Discord, ...) discovered at ``sources``."""

    if not sources:
        return SocialLinksResult(errors=["No sources provided"])
    logger.debug("No social-link scraper configured; %d source(s) skipped", len(sources))
    return SocialLinksResult()


def expired_entry_code(entry: Any) -> Any:
    """Return the raw code held by an expired-code entry (string or mapping)."""

    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        return entry.get("code")
    return getattr(entry, "code", None)


__all__ = [
    "SOCIAL_LINK_FIELDS",
    "ScrapeResult",
    "ScrapedCode",
    "SocialLinkScraper",
    "SocialLinksResult",
    "SourceAggregator",
    "expired_entry_code",
    "scrape_social_links_from_sources",
    "scrape_sources",
]
