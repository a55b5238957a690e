"""
Bounce detection rules.
- Header signals: autoreplies, abuse feedback reports, failed-recipient hints.
- Status codes (RFC 1893 enhanced codes, RFC 821 reply codes).
- Plain-text patterns for spam filters, greylisting and DNS failures.
"""

import logging
import re

from .models import Headers

logger = logging.getLogger(__name__)

CODE_AUTOREPLY = "autoreply"
CODE_ABUSE_REPORT = "abusereport"
CODE_SPAMFILTER = "spamfilter"
CODE_GREYLIST = "greylist"
CODE_DNS_ERROR = "5.4.0"
CODE_FAILED_RECIPIENTS = "5.1.3"

# class.subject.detail, e.g. 5.1.1; not part of an IP address or version string
ENHANCED_CODE_RE = re.compile(r"(?<![\d.])\b[45]\.[0-7]\.[0-8]\b(?!\.?\d)")

# 3-digit reply code laid out like the enhanced code, e.g. 550
SMTP_CODE_RE = re.compile(r"(?<![\d.])\b[45][01257][0-5]\b(?!\.\d)")

# Not preceded by a word character or hyphen, so X-Spam-* header echoes don't count
SPAM_RE = re.compile(r"(?<![\w-])(?:spam|blocked|rejected)\b", re.I)

GREYLIST_RE = re.compile(
    r"YOU DO NOT NEED TO RESEND YOUR MESSAGE|delivery temporarily suspended", re.I
)

DNS_ERROR_RE = re.compile(r"DNS Error|Domain name not found", re.I)

FEEDBACK_REPORT_RE = re.compile(r"report-type=[\"']?feedback-report", re.I)


# Header inspection

def is_autoreply(headers: Headers) -> bool:
    return "x-autoreply" in headers


def has_failed_recipients(headers: Headers) -> bool:
    return "x-failed-recipients" in headers


def is_abuse_report_format(headers: Headers) -> bool:
    content_type = headers.get("content-type")
    if not content_type:
        return False
    return bool(FEEDBACK_REPORT_RE.search(content_type))


def code_from_headers(headers: Headers) -> str:
    """Codes that the headers alone decide, checked before any body text."""
    if is_autoreply(headers):
        return CODE_AUTOREPLY
    if is_abuse_report_format(headers):
        return CODE_ABUSE_REPORT
    return ""


# Text classification

def _spam_hits(text: str) -> int:
    return len(SPAM_RE.findall(text))


def code_from_text(text: str) -> str:
    """
    Derive a failure code from one text fragment.
    Returns an empty string if nothing matched.
    """
    if not text:
        return ""

    code = ""
    match = ENHANCED_CODE_RE.search(text) or SMTP_CODE_RE.search(text)
    if match:
        code = match.group(0)

    if code:
        # Spam filters quote the blocked message back, numeric codes included
        if code.startswith("5") and _spam_hits(text) > 1:
            logger.debug(f"Overriding status code {code} with {CODE_SPAMFILTER}")
            return CODE_SPAMFILTER
        return code

    if GREYLIST_RE.search(text):
        return CODE_GREYLIST

    if _spam_hits(text) > 1:
        return CODE_SPAMFILTER

    if DNS_ERROR_RE.search(text):
        return CODE_DNS_ERROR

    return ""
