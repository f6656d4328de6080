"""
Domain name normalisation and rule matching.

Shared by the ledger (exact match on ingestion) and the client engine
(exact or subdomain match on the page hostname).
"""

import re

DOMAIN_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
MAX_DOMAIN_LENGTH = 253


def normalize_domain(domain: str) -> str:
    """Case-fold, trim and strip a leading ``www.``."""
    cleaned = domain.strip().lower()
    if cleaned.startswith("www."):
        cleaned = cleaned[4:]
    return cleaned


def is_valid_domain(domain: str) -> bool:
    """Whether ``domain`` is a syntactically valid host name."""
    return 0 < len(domain) <= MAX_DOMAIN_LENGTH and DOMAIN_PATTERN.match(domain) is not None


def hostname_matches(hostname: str, domain: str) -> bool:
    """
    Whether a page hostname falls under a rule domain.

    Both sides are normalised; a hostname matches on equality or when it is
    a subdomain (``mail.example.com`` matches ``example.com``).
    """
    host = normalize_domain(hostname)
    target = normalize_domain(domain)
    if not host or not target:
        return False
    return host == target or host.endswith("." + target)
