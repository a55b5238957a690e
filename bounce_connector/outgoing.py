"""Stamp outgoing mail so bounces can be traced back to it."""

import logging
import uuid
from email.message import Message
from email.utils import getaddresses
from typing import List, Optional

from .config import AnalyzerConfig
from .db import record_sent_mail

logger = logging.getLogger(__name__)


def message_recipients(msg: Message) -> List[str]:
    fields = []
    for name in ("To", "Cc", "Bcc"):
        fields.extend(str(v) for v in msg.get_all(name, []))
    return [addr for _, addr in getaddresses(fields) if addr]


def stamp_message(msg: Message, config: Optional[AnalyzerConfig] = None, db_path=None) -> str:
    """
    Give an outgoing message a fresh correlation identifier.

    Any identifier already present is replaced. Every To/Cc/Bcc
    recipient is recorded under the new identifier.

    Returns:
        str: The identifier written to the message
    """
    config = config or AnalyzerConfig()
    header_id = uuid.uuid4().hex

    del msg[config.header_name]
    msg[config.header_name] = header_id

    recipients = message_recipients(msg)
    for address in recipients:
        record_sent_mail(header_id, address, db_path=db_path)

    logger.debug(f"Stamped {header_id} for {len(recipients)} recipient(s)")
    return header_id
