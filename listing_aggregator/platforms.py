# listing_aggregator/platforms.py
"""Platform clients: where candidate listings come from.

The sync orchestrator only knows the `PlatformClient` capability. Real
marketplace APIs are out of scope; the default client simulates a
platform's response the way the dashboard did during development, and
`scrape.ScrapingPlatformClient` reads a public seller page.
"""
import random
import uuid
from typing import Dict, Iterable, List, Optional, Protocol

from . import config
from .models import ConnectedSite, ListingStatus
from .schemas import CandidateListing


class PlatformClient(Protocol):
    def fetch_candidate_listings(self, connection: ConnectedSite) -> List[CandidateListing]:
        ...


class SimulatedPlatformClient:
    """Returns 1-5 plausible, always-new listings per call."""

    CATEGORIES = ["Electronics", "Clothing", "Home", "Sports", "Collectibles"]
    STATUSES = [ListingStatus.ACTIVE, ListingStatus.DRAFT, ListingStatus.SOLD, ListingStatus.PENDING]
    PREFIXES = ["New", "Used", "Like New", "Vintage", "Rare", "Brand New"]
    ITEMS = ["Laptop", "Phone", "Camera", "Shirt", "Shoes", "Watch", "Desk", "Chair", "Bike"]

    def __init__(self, seed: Optional[int] = None, max_items: int = 5):
        self.rng = random.Random(seed)
        self.max_items = max_items

    def fetch_candidate_listings(self, connection: ConnectedSite) -> List[CandidateListing]:
        site = connection.site
        site_name = site.name if site else connection.site_id
        base_url = (site.url if site else None) or f"https://{connection.site_id}.example.com"
        out = []
        for _ in range(self.rng.randint(1, self.max_items)):
            external_id = f"ext-{connection.site_id}-{uuid.uuid4().hex[:12]}"
            prefix = self.rng.choice(self.PREFIXES)
            item = self.rng.choice(self.ITEMS)
            category = self.rng.choice(self.CATEGORIES)
            price = self.rng.randint(1000, 21000) / 100
            out.append(CandidateListing(
                external_id=external_id,
                title=f"{prefix} {item} - {category}",
                description=f"This is a {prefix.lower()} {item.lower()} in the {category.lower()} category. Listed on {site_name}.",
                price=f"${price:.2f}",
                url=f"{base_url}/listing/{external_id}",
                status=self.rng.choice(self.STATUSES),
                metadata={
                    "category": category,
                    "condition": "new" if prefix in ("New", "Brand New") else "used",
                },
            ))
        return out


class PayloadPlatformClient:
    """Serves listings that were pushed to us (browser extension) instead of fetched."""

    def __init__(self, items: Iterable):
        self.items = list(items)

    def fetch_candidate_listings(self, connection: ConnectedSite) -> List[CandidateListing]:
        out = []
        for item in self.items:
            data = item.model_dump(mode="json") if hasattr(item, "model_dump") else dict(item)
            out.append(CandidateListing(
                # the extension identifies listings by their page URL
                external_id=data.get("external_id") or data["url"],
                title=data["title"],
                price=data.get("price"),
                url=data.get("url"),
                description=data.get("description") or "",
                status=data.get("status") or ListingStatus.ACTIVE,
                metadata={k: v for k, v in data.items() if v is not None},
            ))
        return out


def build_platform_clients(mode: Optional[str] = None) -> Dict[str, PlatformClient]:
    """Map every catalogue site id to the client configured by PLATFORM_CLIENT."""
    from .crud import MARKETPLACE_SITES

    mode = (mode or config.PLATFORM_CLIENT).lower()
    if mode == "scrape":
        from .scrape import ScrapingPlatformClient

        client = ScrapingPlatformClient(headless=config.HEADLESS, max_items=config.SCRAPE_MAX_ITEMS)
    elif mode == "simulated":
        client = SimulatedPlatformClient()
    else:
        raise ValueError(f"Unknown PLATFORM_CLIENT {mode!r}")
    return {site["id"]: client for site in MARKETPLACE_SITES}
