"""
Recipient recovery for bounce reports.

The correlation identifier stamped on outgoing mail is the primary
signal. When no identifier in the report matches mail we sent, the
most frequently mentioned address can be used instead, but only if we
recently sent something to it: anyone can craft a bounce naming an
arbitrary address.
"""

import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from .addresses import iter_addresses
from .config import AnalyzerConfig
from .errors import SentMailLookupError
from .models import Resolution, SentMailIndex

logger = logging.getLogger(__name__)


def most_frequent_mail(parts: Sequence[str], ignored_mails: Iterable[str] = (),
                       restrict_to: Optional[Iterable[str]] = None) -> str:
    """
    Return the address mentioned most often across all parts.

    Counts are totals over every part combined. Ties between the two
    highest counts give an empty string rather than a guess.

    Args:
        parts: Text parts of the report
        ignored_mails: Addresses never to return
        restrict_to: If given, only these addresses are considered
    """
    counts = Counter()
    for text in parts:
        counts.update(address.lower() for address in iter_addresses(text))

    if restrict_to is not None:
        allowed = {m.lower() for m in restrict_to}
        counts = Counter({m: n for m, n in counts.items() if m in allowed})

    for address in ignored_mails:
        counts.pop(address.lower(), None)

    if not counts:
        return ""

    # most_common keeps first-seen order among equal counts
    ranked = counts.most_common(2)
    if len(ranked) == 1:
        return ranked[0][0]
    if ranked[0][1] > ranked[1][1]:
        return ranked[0][0]

    logger.debug(f"Tie between {ranked[0][0]} and {ranked[1][0]} ({ranked[0][1]} mentions each)")
    return ""


class RecipientResolver:
    """
    Finds the original recipient of a bounced message.

    Only reads from the sent-mail index; lookup failures count as
    "nothing found" for that query.
    """

    def __init__(self, index: SentMailIndex, config: AnalyzerConfig):
        self.index = index
        self.config = config
        self._id_re = re.compile(r"(?<![\w-])" + re.escape(config.header_name) + r":\s*(\S+)", re.I)

    def resolve(self, parts: Sequence[str], now: Optional[datetime] = None) -> Resolution:
        header_id = ""
        matched = False

        for text in parts:
            for match in self._id_re.finditer(text):
                header_id = match.group(1)
                recipients = self._lookup(header_id)
                if not recipients:
                    continue

                matched = True
                if len(recipients) == 1:
                    logger.debug(f"Identifier {header_id} maps to {recipients[0]}")
                    return Resolution(header_id=header_id, mail=recipients[0])

                # The original send fanned out; pick the candidate the report names most
                mail = most_frequent_mail(parts, self.config.ignored_mails, restrict_to=recipients)
                logger.debug(f"Identifier {header_id} maps to {len(recipients)} recipients, picked {mail or 'none'}")
                return Resolution(header_id=header_id, mail=mail)

        if not matched and self.config.fallback_search:
            mail = self._fallback_search(parts, now)
            return Resolution(header_id=header_id, mail=mail)

        return Resolution(header_id=header_id, mail="")

    def _lookup(self, identifier: str) -> List[str]:
        try:
            return list(self.index.lookup(identifier))
        except Exception as e:
            logger.warning(f"Sent mail lookup failed for {identifier}: {e}", exc_info=not isinstance(e, SentMailLookupError))
            return []

    def _fallback_search(self, parts: Sequence[str], now: Optional[datetime]) -> str:
        candidate = most_frequent_mail(parts, self.config.ignored_mails)
        if not candidate:
            return ""

        since = (now or datetime.now(timezone.utc)) - self.config.recent_window
        try:
            recent = self.index.recently_sent_to(candidate, since)
        except Exception as e:
            logger.warning(f"Recent mail check failed for {candidate}: {e}", exc_info=not isinstance(e, SentMailLookupError))
            return ""

        if not recent:
            logger.info(f"Fallback candidate {candidate} was not mailed since {since:%Y-%m-%d %H:%M:%S}, ignoring")
            return ""

        logger.debug(f"Fallback search resolved {candidate}")
        return candidate
