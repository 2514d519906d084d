import pytest

from oqscore.providers import feeds
from oqscore.providers.feeds import FeedSource, fetch_articles, parse_feed, sources_from_config, strip_html

FETCHED_AT = "2026-02-14T06:00:00Z"
SOURCE = FeedSource(id="oq-test", name="Test Blog", url="https://blog.test/rss", pillar="sentiment")

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Blog</title>
    <link>https://blog.test</link>
    <description>Posts</description>
    <item>
      <title>Developers distrust AI code</title>
      <link>https://blog.test/posts/1</link>
      <description><![CDATA[<p>Survey of <em>1,000</em> engineers.</p>]]></description>
      <pubDate>Fri, 13 Feb 2026 09:30:00 GMT</pubDate>
    </item>
    <item>
      <title>Undated post</title>
      <link>https://blog.test/posts/2</link>
    </item>
    <item>
      <title>No link here</title>
    </item>
  </channel>
</rss>
"""

ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Blog</title>
  <id>urn:atom-blog</id>
  <updated>2026-02-14T08:00:00Z</updated>
  <entry>
    <title>Agents write tests now</title>
    <link href="https://atom.test/entries/1"/>
    <id>urn:entry-1</id>
    <updated>2026-02-14T08:00:00Z</updated>
    <summary>Short summary.</summary>
  </entry>
</feed>
"""


def test_parse_rss():
    articles = parse_feed(RSS, SOURCE, FETCHED_AT)
    assert [a.url for a in articles] == ["https://blog.test/posts/1", "https://blog.test/posts/2"]

    first = articles[0]
    assert first.title == "Developers distrust AI code"
    assert first.summary == "Survey of 1,000 engineers."
    assert first.published_at == "2026-02-13T09:30:00Z"
    assert first.source == "Test Blog"
    assert first.pillar == "sentiment"
    assert first.fetched_at == FETCHED_AT

    assert articles[1].published_at == FETCHED_AT
    assert articles[1].summary is None


def test_parse_atom():
    articles = parse_feed(ATOM, SOURCE, FETCHED_AT)
    assert len(articles) == 1
    assert articles[0].url == "https://atom.test/entries/1"
    assert articles[0].published_at == "2026-02-14T08:00:00Z"


def test_strip_html():
    assert strip_html("<p>Hello <em>world</em></p>") == "Hello world"
    assert strip_html(None) == ""


def test_sources_from_config_skips_unknown_pillars():
    config = {"feeds": [
        {"id": "a", "name": "A", "url": "https://a.test/rss", "pillar": "industry"},
        {"id": "b", "name": "B", "url": "https://b.test/rss", "pillar": "weather"},
    ]}
    assert sources_from_config(config) == [FeedSource("a", "A", "https://a.test/rss", "industry")]
    assert sources_from_config({}) == []


def test_one_broken_feed_does_not_stop_the_rest(monkeypatch):
    other = FeedSource(id="oq-down", name="Down", url="https://down.test/rss", pillar="industry")

    def fake_fetch(source, fetched_at, timeout=20):
        if source.id == "oq-down":
            raise RuntimeError("HTTP 503")
        return parse_feed(RSS, source, fetched_at)

    monkeypatch.setattr(feeds, "fetch_source", fake_fetch)
    articles, errors = fetch_articles([other, SOURCE], FETCHED_AT)
    assert len(articles) == 2
    assert errors == ["oq-down: HTTP 503"]


class FakeResponse:
    def __init__(self, status_code, content=b""):
        self.status_code = status_code
        self.content = content


def test_fetch_source_retries_once(monkeypatch, sleeps):
    replies = [ConnectionError("reset"), FakeResponse(200, RSS.encode("utf-8"))]

    def fake_get(url, headers=None, timeout=None):
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(feeds.requests, "get", fake_get)
    articles = feeds.fetch_source(SOURCE, FETCHED_AT)
    assert len(articles) == 2
    assert sleeps == [2.0]


def test_fetch_source_gives_up_after_second_failure(monkeypatch, sleeps):
    monkeypatch.setattr(feeds.requests, "get", lambda url, headers=None, timeout=None: FakeResponse(503))
    with pytest.raises(RuntimeError, match="HTTP 503"):
        feeds.fetch_source(SOURCE, FETCHED_AT)
    assert sleeps == [2.0]
