"""
Email address extraction from free text.

Works on header blocks, quoted original messages and HTML alike.
Duplicates are kept and order follows the text, since the recipient
resolver counts occurrences.
"""

import re
from typing import Iterator, List

ADDRESS_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")


def iter_addresses(text: str) -> Iterator[str]:
    if not text:
        return
    for match in ADDRESS_RE.finditer(text):
        yield match.group(0).strip(".")


def extract_addresses(text: str) -> List[str]:
    return list(iter_addresses(text))


def extract_domain(address: str) -> str:
    """Domain part of an address, lower-cased; "unknown" if there is none."""
    match = ADDRESS_RE.search(address or "")
    if match:
        return match.group(0).rsplit("@", 1)[1].lower()
    return "unknown"
