"""Chain vs independent classification by name and website domain."""

import re
from typing import Iterable, Optional, Sequence, Tuple

from ownerscout.models import ChainDetectionResult

NATIONAL_CHAINS = (
    "McDonald's", "Burger King", "Wendy's", "Taco Bell", "KFC",
    "Subway", "Starbucks", "Dunkin'", "Chipotle", "Panera Bread",
    "Chick-fil-A", "Popeyes", "Arby's", "Sonic Drive-In", "Jack in the Box",
    "Panda Express", "Dairy Queen", "Five Guys", "Jimmy John's", "Qdoba",
    "Moe's Southwest Grill", "Firehouse Subs", "Jersey Mike's", "Blaze Pizza",
    "MOD Pizza", "Pieology", "Shake Shack", "Smashburger", "Wingstop",
    "Buffalo Wild Wings", "Applebee's", "Chili's", "TGI Friday's", "Olive Garden",
    "Red Lobster", "Outback Steakhouse", "Texas Roadhouse", "LongHorn Steakhouse",
    "The Cheesecake Factory", "P.F. Chang's", "Benihana", "Maggiano's",
    "California Pizza Kitchen", "BJ's Restaurant", "Cracker Barrel", "Denny's",
    "IHOP", "Waffle House", "Perkins", "Bob Evans", "First Watch",
    "Papa John's", "Domino's", "Pizza Hut", "Little Caesars", "Papa Murphy's",
    "Marco's Pizza", "Hungry Howie's", "Round Table Pizza", "Godfather's Pizza",
    "Sbarro", "Cici's Pizza", "Chuck E. Cheese", "Peter Piper Pizza",
)

REGIONAL_CHAINS = (
    "Bojangles", "Cookout", "Zaxby's", "Krystal", "Whataburger",
    "Church's Chicken", "Raising Cane's", "Fuddruckers", "Jason's Deli",
    "McAlister's Deli", "Newk's Eatery", "Mellow Mushroom",
    "In-N-Out Burger", "Carl's Jr.", "Del Taco", "El Pollo Loco", "The Habit",
    "Islands Fine Burgers", "Rubio's Coastal Grill", "Baja Fresh",
    "Culver's", "Portillo's", "White Castle", "Steak 'n Shake", "Skyline Chili",
    "Penn Station", "Lion's Choice", "Runza",
    "Friendly's", "Legal Sea Foods", "Au Bon Pain", "Bertucci's",
    "Torchy's Tacos", "Chuy's", "Pappadeaux", "Pappasito's",
    "Freebirds", "Fuzzy's Taco Shop", "Taco Cabana", "Rosa's Cafe",
)

FAST_CASUAL_CHAINS = (
    "Sweetgreen", "Cava", "Tender Greens", "True Food Kitchen",
    "Flower Child", "Mendocino Farms", "Veggie Grill",
    "Native Foods", "By Chloe", "Honeygrow", "Dig Inn", "Chopt",
    "Just Salad", "Saladworks", "Freshii", "Protein Bar", "Snap Kitchen",
)

COFFEE_CHAINS = (
    "Peet's Coffee", "The Coffee Bean", "Caribou Coffee",
    "Tim Hortons", "Dutch Bros", "Philz Coffee", "Blue Bottle", "Intelligentsia",
    "Stumptown", "La Colombe", "Joe Coffee", "Gregory's Coffee",
)

BAKERY_CHAINS = (
    "Corner Bakery", "Paris Baguette", "85°C Bakery Cafe",
    "Nothing Bundt Cakes", "Great American Cookies", "Cinnabon", "Auntie Anne's",
    "Krispy Kreme", "Duck Donuts", "Shipley Do-Nuts",
)

ALL_CHAINS = NATIONAL_CHAINS + REGIONAL_CHAINS + FAST_CASUAL_CHAINS + COFFEE_CHAINS + BAKERY_CHAINS

CHAIN_DOMAINS = (
    "mcdonalds.com", "burgerking.com", "wendys.com", "tacobell.com",
    "kfc.com", "subway.com", "starbucks.com", "dunkindonuts.com",
    "chipotle.com", "panerabread.com", "chick-fil-a.com", "popeyes.com",
    "arbys.com", "sonicdrivein.com", "jackinthebox.com", "pandaexpress.com",
    "dairyqueen.com", "fiveguys.com", "jimmyjohns.com", "qdoba.com",
    "olivegarden.com", "redlobster.com", "outback.com", "texasroadhouse.com",
    "thecheesecakefactory.com", "pfchangs.com", "benihana.com",
    "papajohns.com", "dominos.com", "pizzahut.com", "littlecaesars.com",
    "in-n-out.com", "whataburger.com", "culvers.com", "shakeshack.com",
)

CHAIN_NAME_INDICATORS = (
    (re.compile(r"#\d+"), "Location number in name"),
    (re.compile(r"\b(location|store)\s*#?\d+", re.IGNORECASE), "Store number in name"),
    (re.compile(r"\b(franchise|franchisee)", re.IGNORECASE), "Franchise mention"),
)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    lowered = _NON_ALNUM.sub("", (name or "").lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def _words_match(chain_words: Sequence[str], name_words: Sequence[str]) -> bool:
    return all(
        any(word in name_word or (len(name_word) >= 3 and name_word in word) for name_word in name_words)
        for word in chain_words
    )


def find_chain_match(name: str, chains: Iterable[str] = ALL_CHAINS) -> Optional[Tuple[str, int]]:
    normalized = normalize_name(name)
    if not normalized:
        return None
    name_words = normalized.split(" ")

    for chain in chains:
        normalized_chain = normalize_name(chain)
        if not normalized_chain:
            continue
        if normalized == normalized_chain:
            return chain, 100
        if normalized_chain in normalized:
            return chain, 95
        if _words_match(normalized_chain.split(" "), name_words):
            return chain, 85
    return None


def check_domain(website: Optional[str], chains: Iterable[str] = ALL_CHAINS) -> Optional[Tuple[str, int]]:
    if not website:
        return None
    lowered = website.lower()
    for domain in CHAIN_DOMAINS:
        if domain in lowered:
            stem = domain.split(".")[0]
            chain_name = next(
                (chain for chain in chains if normalize_name(chain).replace(" ", "") == stem.replace("-", "")),
                "Unknown Chain",
            )
            return chain_name, 100
    return None


def detect_chain(name: str, website: Optional[str] = None, chains: Iterable[str] = ALL_CHAINS) -> ChainDetectionResult:
    chains = tuple(chains)

    name_match = find_chain_match(name, chains)
    if name_match:
        chain, confidence = name_match
        return ChainDetectionResult(True, confidence, f"Name matches known chain: {chain}", chain)

    domain_match = check_domain(website, chains)
    if domain_match:
        chain, confidence = domain_match
        return ChainDetectionResult(True, confidence, f"Domain matches chain: {chain}", chain)

    for pattern, reason in CHAIN_NAME_INDICATORS:
        if pattern.search(name or ""):
            return ChainDetectionResult(True, 70, reason)

    return ChainDetectionResult(False, 80, "No chain indicators found")
