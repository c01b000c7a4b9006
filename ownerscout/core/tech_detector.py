"""Website tech-stack detection for restaurant sites.

Detection is split in two: ``TechDetector`` fetches a homepage, and
``analyze_html`` runs the signature tables below against what was fetched.
The tables are plain data; ``matches`` is the only code that reads them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from ownerscout.models import TechStackProfile

logger = logging.getLogger(__name__)

USER_AGENT = "OwnerScoutBot/1.0 (+https://ownerscout.app/contact)"
CRAWL_TIMEOUT = 5


@dataclass(frozen=True)
class Signature:
    """How to recognise one product.

    ``domains`` match the site URL, ``scripts`` match script/link/iframe
    sources, ``meta`` matches meta tag name/content and ``content`` matches
    anywhere in the raw HTML. All comparisons are case-insensitive.
    """

    name: str
    domains: Tuple[str, ...] = ()
    scripts: Tuple[str, ...] = ()
    content: Tuple[str, ...] = ()
    meta: Tuple[str, ...] = ()


WEBSITE_PLATFORMS = (
    Signature("WordPress", scripts=("/wp-content/", "/wp-includes/"), content=("wp-content",), meta=("wordpress",)),
    Signature("Wix", domains=(".wixsite.com", ".wix.com"), scripts=("static.parastorage.com", "wix.com"), content=("x-wix-",)),
    Signature("Squarespace", domains=(".squarespace.com",), scripts=("squarespace.com", "sqsp.com"), content=("squarespace",)),
    Signature("BentoBox", domains=(".bentoboxapp.com", ".getbento.com"), scripts=("bentobox", "getbento"), content=("bentobox",)),
    Signature("Shopify", domains=(".myshopify.com",), scripts=("cdn.shopify.com",), content=("shopify",)),
    Signature("GoDaddy", scripts=("godaddy.com", "secureserver.net"), content=("godaddy",), meta=("go daddy", "godaddy")),
)

ORDERING_SYSTEMS = (
    Signature("Owner.com", domains=(".owner.com", ".tryowner.com"), scripts=("owner.com",), content=("owner.com",)),
    Signature("ChowNow", domains=(".chownow.com",), scripts=("chownow.com",), content=("chownow",)),
    Signature("Toast", scripts=("toasttab.com", "toast.com"), content=("toast online ordering", "toasttab")),
    Signature("Olo", scripts=("olo.com",), content=("olo.com",)),
    Signature("Slice", scripts=("slicelife.com",), content=("slicelife",)),
    Signature("Square Online", scripts=("square.site", "squareup.com"), content=("squareup",)),
    Signature("Grubhub Direct", scripts=("grubhub.com/direct",), content=("grubhub direct",)),
)

RESERVATION_SYSTEMS = (
    Signature("OpenTable", scripts=("opentable.com",), content=("opentable",)),
    Signature("Resy", scripts=("resy.com",), content=("resy.com",)),
    Signature("SevenRooms", scripts=("sevenrooms.com",), content=("sevenrooms",)),
    Signature("Yelp Reservations", scripts=("yelp.com/reservations",), content=("yelp reservations",)),
    Signature("Tock", scripts=("exploretock.com",), content=("exploretock",)),
)

DELIVERY_PLATFORMS = (
    Signature("DoorDash", scripts=("doordash.com",), content=("doordash",)),
    Signature("UberEats", scripts=("ubereats.com",), content=("uber eats", "ubereats")),
    Signature("Grubhub", scripts=("grubhub.com",), content=("grubhub",)),
    Signature("Postmates", scripts=("postmates.com",), content=("postmates",)),
)

POS_SYSTEMS = (
    Signature("Toast", scripts=("toasttab.com",), content=("toast pos", "toasttab")),
    Signature("Square", scripts=("squareup.com", "square.site"), content=("squareup",)),
    Signature("Clover", scripts=("clover.com",), content=("clover.com",)),
    Signature("Lightspeed", scripts=("lightspeedhq.com",), content=("lightspeed",)),
    Signature("Aloha", content=("aloha pos", "ncr aloha")),
)

LOYALTY_CRM = (
    Signature("Thanx", scripts=("thanx.com",), content=("thanx.com",)),
    Signature("Punchh", scripts=("punchh.com",), content=("punchh",)),
    Signature("Paytronix", scripts=("paytronix.com",), content=("paytronix",)),
)

OTHER_SCRIPTS = (
    Signature("Google Analytics 4", scripts=("googletagmanager.com/gtag", "google-analytics.com/analytics.js")),
    Signature("Meta Pixel", scripts=("connect.facebook.net",)),
    Signature("Hotjar", scripts=("hotjar.com",)),
)

FIRST_PARTY_ORDERING_INDICATORS = (
    "order online",
    "order now",
    "place order",
    "add to cart",
    "checkout",
    "menu",
    "/order",
    "/menu",
)
THIRD_PARTY_WIDGET_HOSTS = ("chownow", "doordash", "ubereats", "grubhub")


@dataclass
class PageEvidence:
    """Lower-cased facts pulled from one fetched page."""

    url: str
    html: str
    sources: List[str] = field(default_factory=list)
    meta: List[str] = field(default_factory=list)
    has_iframe: bool = False


def sanitize_website(raw_url: str) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""

    if not raw_url:
        return None

    url = raw_url.strip()
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    normalized = parsed._replace(path=normalized_path, fragment="")
    return urlunparse(normalized)


def collect_evidence(url: str, html: str) -> PageEvidence:
    soup = BeautifulSoup(html or "", "html.parser")
    sources: List[str] = []
    for tag_name, attribute in (("script", "src"), ("link", "href"), ("iframe", "src")):
        for tag in soup.find_all(tag_name):
            value = tag.get(attribute)
            if value:
                sources.append(value.strip().lower())

    meta: List[str] = []
    for tag in soup.find_all("meta"):
        descriptor = " ".join(filter(None, [tag.get("name"), tag.get("property"), tag.get("content")]))
        if descriptor:
            meta.append(descriptor.lower())

    return PageEvidence(
        url=(url or "").lower(),
        html=(html or "").lower(),
        sources=sources,
        meta=meta,
        has_iframe=soup.find("iframe") is not None,
    )


def matches(signature: Signature, evidence: PageEvidence) -> bool:
    if any(domain.lower() in evidence.url for domain in signature.domains):
        return True
    if any(pattern.lower() in source for pattern in signature.scripts for source in evidence.sources):
        return True
    if any(pattern.lower() in descriptor for pattern in signature.meta for descriptor in evidence.meta):
        return True
    return any(pattern.lower() in evidence.html for pattern in signature.content)


def detect_from(signatures: Iterable[Signature], evidence: PageEvidence) -> List[str]:
    return [signature.name for signature in signatures if matches(signature, evidence)]


def has_first_party_ordering(evidence: PageEvidence, ordering: Sequence[str]) -> bool:
    """Ordering UI on the restaurant's own pages that isn't an embedded marketplace widget."""
    if not ordering:
        return False
    has_ordering_ui = any(indicator in evidence.html for indicator in FIRST_PARTY_ORDERING_INDICATORS)
    widget_sources = [source for source in evidence.sources if any(host in source for host in THIRD_PARTY_WIDGET_HOSTS)]
    has_third_party_widget = evidence.has_iframe and bool(widget_sources)
    return has_ordering_ui and not has_third_party_widget


def calculate_confidence(
    platform: Sequence[str],
    ordering: Sequence[str],
    reservations: Sequence[str],
    delivery: Sequence[str],
    pos: Sequence[str],
    loyalty: Sequence[str],
) -> int:
    total = (1 if platform else 0) + len(ordering) + len(reservations) + len(delivery) + len(pos) + len(loyalty)
    if total == 0:
        return 20
    if total == 1:
        return 40
    if total == 2:
        return 60
    if total == 3:
        return 75
    return min(90, 75 + (total - 3) * 5)


def analyze_html(url: str, html: str) -> TechStackProfile:
    evidence = collect_evidence(url, html)

    platforms = detect_from(WEBSITE_PLATFORMS, evidence)
    ordering = detect_from(ORDERING_SYSTEMS, evidence)
    reservations = detect_from(RESERVATION_SYSTEMS, evidence)
    delivery = detect_from(DELIVERY_PLATFORMS, evidence)
    pos = detect_from(POS_SYSTEMS, evidence)
    loyalty = detect_from(LOYALTY_CRM, evidence)
    other = detect_from(OTHER_SCRIPTS, evidence)

    return TechStackProfile(
        website_platform=platforms[0] if platforms else "Custom",
        online_ordering=ordering,
        reservations=reservations,
        delivery=delivery,
        loyalty_or_crm=loyalty,
        pos=pos,
        other_scripts=other,
        confidence=calculate_confidence(platforms, ordering, reservations, delivery, pos, loyalty),
        has_first_party_ordering=has_first_party_ordering(evidence, ordering),
    )


def fetch_html(session: requests.Session, url: str, *, timeout: float = CRAWL_TIMEOUT) -> Optional[Tuple[str, str]]:
    """Fetch a URL and return the final URL + HTML when it is HTML content."""

    try:
        response = session.get(url, timeout=timeout, allow_redirects=True)
        if response.status_code >= 400:
            logger.warning("Failed to crawl %s: status=%s", url, response.status_code)
            return None
        content_type = response.headers.get("Content-Type", "").lower()
        if "text/html" not in content_type:
            logger.debug("Skipping non-HTML content at %s (content-type=%s)", url, content_type)
            return None
        return response.url, response.text
    except requests.RequestException as exc:
        logger.warning("Failed to crawl %s: %s", url, exc)
        return None


class TechDetector:
    """Crawl a restaurant homepage and profile its tech stack.

    ``detect`` never raises for unreachable or malformed sites; it returns
    ``TechStackProfile.unknown()`` instead.
    """

    def __init__(self, *, session: Optional[requests.Session] = None, timeout: float = CRAWL_TIMEOUT) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
        self.session.headers.setdefault("Accept-Language", "en-US,en;q=0.9")

    def detect(self, website: Optional[str]) -> TechStackProfile:
        url = sanitize_website(website or "")
        if not url:
            return TechStackProfile.unknown()

        fetched = fetch_html(self.session, url, timeout=self.timeout)
        if not fetched:
            return TechStackProfile.unknown()

        final_url, html = fetched
        # Domain signatures must see the address the user gave, not only the redirect target.
        return analyze_html(f"{url} {final_url}", html)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "TechDetector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()
