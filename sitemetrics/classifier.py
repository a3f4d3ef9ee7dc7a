# sitemetrics/classifier.py

from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

DIRECT = "Direct"
SOCIAL_MEDIA = "Social Media"
SEARCH = "Search"
INTERNAL = "Internal"
REFERRAL = "Referral"

DEFAULT_INTERNAL_DOMAINS: Tuple[str, ...] = ("localhost",)

# Hostname fragments matched in order - first match wins
REFERRER_RULES: list[Tuple[str, Tuple[str, ...]]] = [
    (SOCIAL_MEDIA, (
        "facebook.com",
        "twitter.com",
        "instagram.com",
        "linkedin.com",
        "youtube.com",
        "tiktok.com",
    )),
    (SEARCH, (
        "google.",
        "bing.com",
        "yahoo.com",
        "duckduckgo.com",
    )),
]


def _referrer_hostname(referrer: str) -> Optional[str]:
    try:
        parts = urlsplit(referrer.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return host.lower()


def categorize_referrer(
    referrer: Optional[str],
    internal_domains: Tuple[str, ...] = DEFAULT_INTERNAL_DOMAINS,
) -> str:
    """
    Classify a referrer URL into a traffic source.

    Returns one of: Direct, Social Media, Search, Internal, Referral
    """
    if not referrer:
        return DIRECT

    host = _referrer_hostname(referrer)
    if host is None:
        return DIRECT

    for category, fragments in REFERRER_RULES:
        if any(fragment in host for fragment in fragments):
            return category

    if any(domain.lower() in host for domain in internal_domains):
        return INTERNAL

    return REFERRAL


# Quick lookup for repeated referrers
KNOWN_REFERRERS: Dict[Tuple[str, Tuple[str, ...]], str] = {}


def categorize_referrer_cached(
    referrer: Optional[str],
    internal_domains: Tuple[str, ...] = DEFAULT_INTERNAL_DOMAINS,
) -> str:
    """
    Classify with caching for repeated referrers.
    """
    if not referrer:
        return DIRECT

    key = (referrer, internal_domains)
    if key in KNOWN_REFERRERS:
        return KNOWN_REFERRERS[key]

    category = categorize_referrer(referrer, internal_domains)

    # Cache if we haven't exceeded limit (prevent memory issues)
    if len(KNOWN_REFERRERS) < 10000:
        KNOWN_REFERRERS[key] = category

    return category
