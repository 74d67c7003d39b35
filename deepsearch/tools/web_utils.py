from __future__ import annotations

from urllib.parse import urlparse


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        return urlparse(url).netloc
    except ValueError:
        return url
