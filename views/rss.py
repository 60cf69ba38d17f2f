from __future__ import annotations

from datetime import UTC, datetime
from email.utils import format_datetime
from xml.etree import ElementTree as ET

from .aggregator import RssPage


def _text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    node = ET.SubElement(parent, tag)
    node.text = value
    return node


def render_rss(page: RssPage, *, base_url: str, title: str = "SGTM") -> bytes:
    base_url = base_url.rstrip("/")
    rss = ET.Element("rss", version="2.0")
    channel = ET.SubElement(rss, "channel")
    _text(channel, "title", title)
    _text(channel, "link", f"{base_url}/")
    _text(channel, "description", "Last tracks")
    _text(channel, "lastBuildDate", format_datetime(datetime.now(UTC)))

    for track in page.last_tracks:
        item = ET.SubElement(channel, "item")
        link = f"{base_url}{track['canonical_url']}"
        _text(item, "title", track["title"])
        _text(item, "link", link)
        _text(item, "guid", link)
        if track.get("body"):
            _text(item, "description", track["body"])
        author = track.get("author")
        if author:
            _text(item, "author", author["display_name"])
        if track.get("sort_date"):
            _text(item, "pubDate", format_datetime(track["sort_date"]))
    return ET.tostring(rss, encoding="utf-8", xml_declaration=True)
