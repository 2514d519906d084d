"""RSS/Atom article ingestion.

Each configured source is fetched and parsed on its own; one broken feed is
logged and skipped so the rest of the fetch still lands.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import feedparser
import requests

from oqscore.core.logger import logger
from oqscore.core.retry import with_retries
from oqscore.models.datatypes import PILLARS, Article

_USER_AGENT = "oqscore/1.0"
_ISO_FMT = "%Y-%m-%dT%H:%M:%SZ"
_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class FeedSource:
    id: str
    name: str
    url: str
    pillar: str


def sources_from_config(config: Dict[str, Any]) -> List[FeedSource]:
    """Read the ``feeds:`` list; entries with an unknown pillar are skipped."""
    sources = []
    for raw in config.get("feeds") or []:
        pillar = raw.get("pillar")
        if pillar not in PILLARS:
            logger.warning(f"feeds: source {raw.get('id')} has unknown pillar {pillar!r}, skipped")
            continue
        sources.append(FeedSource(id=raw["id"], name=raw["name"], url=raw["url"], pillar=pillar))
    return sources


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


def _published(entry: Any) -> Optional[str]:
    parsed = getattr(entry, "published_parsed", None) or getattr(entry, "updated_parsed", None)
    if not parsed:
        return None
    return datetime(*parsed[:6]).strftime(_ISO_FMT)


def parse_feed(content: Any, source: FeedSource, fetched_at: str) -> List[Article]:
    """Parse RSS/Atom ``content`` into articles for ``source``.

    Entries without a title or link are dropped. Missing publication dates
    default to ``fetched_at``.
    """
    feed = feedparser.parse(content)
    if feed.bozo and hasattr(feed, "bozo_exception"):
        logger.warning(f"feeds: parse warning for {source.id}: {feed.bozo_exception}")

    articles = []
    for entry in feed.entries:
        title = strip_html(getattr(entry, "title", ""))
        url = getattr(entry, "link", "")
        if not title or not url:
            continue
        summary = strip_html(getattr(entry, "summary", ""))
        articles.append(Article(
            id="",
            title=title,
            url=url,
            source=source.name,
            pillar=source.pillar,
            summary=summary or None,
            published_at=_published(entry) or fetched_at,
            fetched_at=fetched_at,
        ))
    return articles


@with_retries(max_attempts=2, initial_delay=2.0)
def fetch_source(source: FeedSource, fetched_at: str, timeout: float = 20) -> List[Article]:
    logger.info(f"feeds: fetching {source.id} ({source.url})")
    resp = requests.get(source.url, headers={"User-Agent": _USER_AGENT}, timeout=timeout)
    if resp.status_code != 200:
        raise RuntimeError(f"HTTP {resp.status_code}")
    return parse_feed(resp.content, source, fetched_at)


def fetch_articles(
    sources: Sequence[FeedSource], fetched_at: str
) -> Tuple[List[Article], List[str]]:
    """Fetch every source.

    Returns:
        ``(articles, errors)`` where ``errors`` holds ``"<source id>: <reason>"``.
    """
    articles: List[Article] = []
    errors: List[str] = []
    for source in sources:
        try:
            items = fetch_source(source, fetched_at)
        except Exception as exc:
            logger.error(f"feeds: {source.id} failed: {exc}")
            errors.append(f"{source.id}: {exc}")
            continue
        logger.info(f"feeds: {len(items)} entries from {source.id}")
        articles.extend(items)
    return articles, errors
