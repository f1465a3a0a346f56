# listing_aggregator/scrape.py
"""Platform client that scrapes a seller's public marketplace page.

The connection's credentials may carry `profile_url` (the page listing the
seller's items) and `cookies` (a Playwright cookie list for logged-in
pages). Each item page is fetched and parsed into a `CandidateListing`.
"""
import re
from time import sleep
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from playwright.sync_api import sync_playwright, TimeoutError as PWTimeout

from .errors import PlatformClientError
from .schemas import CandidateListing
from .utils import logger, retry

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"

ITEM_SELECTOR = "a[href*='/marketplace/item/'], a[href*='/item/'], a[href*='/itm/'], a[href*='/listing/']"
_PRICE_RE = re.compile(r"([\$€£¥])\s*([0-9][0-9,]*(?:\.[0-9]+)?)")


def _get_id(url):
    m = re.search(r"/(?:item|itm|listing)/([^/?&]+)", url)
    return m.group(1) if m else url.rstrip("/").split("/")[-1]


def parse_item_page(html, url):
    """Build a candidate from an item page's HTML."""
    soup = BeautifulSoup(html, _bs_parser)
    title = soup.find("meta", property="og:title")
    title = title["content"].strip() if title else soup.title.string.strip() if soup.title and soup.title.string else None
    if not title:
        return None
    description = soup.find("meta", property="og:description")
    description = description["content"].strip() if description else ""
    text_blob = soup.get_text(" ", strip=True)
    price_m = _PRICE_RE.search(text_blob)
    location = None
    loc = soup.select_one("[data-testid*='location'], [class*='location']")
    if loc:
        location = loc.get_text(" ", strip=True)
    return CandidateListing(
        external_id=_get_id(url),
        title=title,
        description=description,
        price=price_m.group(0) if price_m else None,
        url=url,
        metadata={"location": location} if location else {},
    )


@retry(Exception, tries=3, delay=2, backoff=2)
def fetch_url_content(page, url):
    page.goto(url, timeout=60000)
    sleep(1)
    return page.content()


class ScrapingPlatformClient:
    def __init__(self, headless=True, max_items=200, max_rounds=50):
        self.headless = headless
        self.max_items = max_items
        self.max_rounds = max_rounds

    def _collect_item_urls(self, page, start_url):
        # Progressive infinite scroll until no new items appear for a few rounds or cap is reached
        origin = "{0.scheme}://{0.netloc}".format(urlparse(start_url))
        urls_set = set()
        stagnant_rounds = 0
        rounds = self.max_rounds
        while stagnant_rounds < 3 and len(urls_set) < self.max_items and rounds > 0:
            page.evaluate("window.scrollBy(0, document.body.scrollHeight)")
            page.wait_for_load_state("networkidle", timeout=30000)
            sleep(1.0)
            before = len(urls_set)
            for a in page.query_selector_all(ITEM_SELECTOR):
                href = a.get_attribute("href")
                if not href:
                    continue
                if href.startswith("/"):
                    href = urljoin(origin, href)
                urls_set.add(href.split("?")[0])
                if len(urls_set) >= self.max_items:
                    break
            stagnant_rounds = stagnant_rounds + 1 if len(urls_set) == before else 0
            rounds -= 1
        return sorted(urls_set)

    def fetch_candidate_listings(self, connection):
        credentials = connection.credentials or {}
        start_url = credentials.get("profile_url") or (connection.site.url if connection.site else None)
        if not start_url:
            raise PlatformClientError(f"No page to scrape for site {connection.site_id}")
        candidates = []
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=self.headless)
            context = browser.new_context()
            try:
                if credentials.get("cookies"):
                    context.add_cookies(credentials["cookies"])
                page = context.new_page()
                page.goto(start_url, timeout=60000)
                page.wait_for_load_state("domcontentloaded")
                sleep(2)
                urls = self._collect_item_urls(page, start_url)
                logger.info("Found %d candidate urls for %s", len(urls), connection.site_id)
                for u in urls:
                    try:
                        candidate = parse_item_page(fetch_url_content(page, u), u)
                    except PWTimeout as e:
                        logger.warning("Timeout on %s: %s", u, e)
                        continue
                    if candidate:
                        candidates.append(candidate)
            finally:
                context.close()
                browser.close()
        return candidates
