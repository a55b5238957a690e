#!/usr/bin/env python3
"""
Fetch bounce reports from the bounce mailbox, analyze them and store
complete analyses for the rest of the system to act on.
"""

import argparse
import email
import imaplib
import logging
import os
import poplib
import sys
from contextlib import contextmanager
from email.message import Message
from typing import Dict, Iterator, List, Optional, Tuple

from .analyzer import ReportAnalyzer
from .config import ConnectorConfig, Settings, load_config
from .db import SqliteSentMailIndex, init_db, insert_analysis
from .errors import MailboxError
from .models import ReportPart

logger = logging.getLogger(__name__)


# ============================================
# Decoding
# ============================================

def _decode_payload(payload: bytes, charset: str) -> str:
    try:
        return payload.decode(charset, errors="ignore")
    except LookupError:
        return payload.decode("utf-8", errors="ignore")


def _header_block(msg: Message) -> str:
    return "\n".join(f"{name}: {value}" for name, value in msg.items())


def message_to_parts(msg: Message) -> List[ReportPart]:
    """
    Split a bounce into the part list the analyzer consumes.

    Part 0 holds the bounce headers, then one text part per leaf MIME
    part in walk order. An embedded message/rfc822 also contributes its
    header block, where the correlation header usually sits.
    """
    headers = {name: str(value) for name, value in msg.items()}
    parts = [ReportPart(data=headers, charset=msg.get_content_charset() or "")]

    for part in msg.walk():
        if part.get_content_type() == "message/rfc822":
            payload = part.get_payload()
            if isinstance(payload, list) and payload:
                logger.debug("Found embedded original message/rfc822 part")
                parts.append(ReportPart(data=_header_block(payload[0]), charset=""))
            continue

        if part.is_multipart():
            continue

        payload = part.get_payload(decode=True)
        if payload is None:
            continue

        charset = part.get_content_charset() or "utf-8"
        parts.append(ReportPart(data=_decode_payload(payload, charset), charset=charset))

    return parts


# ============================================
# Mailbox access
# ============================================

class ImapMailbox:
    def __init__(self, connector: ConnectorConfig):
        cls = imaplib.IMAP4_SSL if connector.use_ssl else imaplib.IMAP4
        self.conn = cls(connector.server, connector.effective_port)
        self.conn.login(connector.user or "", connector.password or "")
        self.conn.select(connector.folder)
        self.deleted = False

    def messages(self) -> Iterator[Tuple[str, bytes]]:
        result, data = self.conn.search(None, "ALL")
        if result != "OK":
            logger.warning("No messages found!")
            return

        logger.debug(f"Found {len(data[0].split())} messages")
        for num in data[0].split():
            result, msg_data = self.conn.fetch(num, "(RFC822)")
            if result != "OK":
                logger.warning(f"Error fetching message {num.decode()}")
                continue
            yield num.decode(), msg_data[0][1]

    def delete(self, num: str) -> None:
        self.conn.store(num, "+FLAGS", "\\Deleted")
        self.deleted = True

    def close(self) -> None:
        if self.deleted:
            self.conn.expunge()
        self.conn.logout()


class Pop3Mailbox:
    def __init__(self, connector: ConnectorConfig):
        cls = poplib.POP3_SSL if connector.use_ssl else poplib.POP3
        self.conn = cls(connector.server, connector.effective_port)
        self.conn.user(connector.user or "")
        self.conn.pass_(connector.password or "")

    def messages(self) -> Iterator[Tuple[str, bytes]]:
        count, _ = self.conn.stat()
        logger.debug(f"Found {count} messages")
        for i in range(1, count + 1):
            _, lines, _ = self.conn.retr(i)
            yield str(i), b"\r\n".join(lines)

    def delete(self, num: str) -> None:
        self.conn.dele(int(num))

    def close(self) -> None:
        # QUIT commits pending deletions
        self.conn.quit()


@contextmanager
def open_mailbox(connector: ConnectorConfig):
    if not connector.server:
        raise MailboxError("No bounce mailbox server configured")
    if connector.effective_port is None:
        raise MailboxError(f"Unknown mailbox protocol: {connector.protocol}")

    logger.info(f"Connecting to {connector.protocol}://{connector.server}:{connector.effective_port}")
    try:
        mailbox = Pop3Mailbox(connector) if connector.is_pop3 else ImapMailbox(connector)
    except (imaplib.IMAP4.error, poplib.error_proto, OSError) as e:
        raise MailboxError(f"Cannot open mailbox: {e}") from e

    try:
        yield mailbox
    except (imaplib.IMAP4.error, poplib.error_proto, OSError) as e:
        raise MailboxError(f"Error reading mailbox: {e}") from e
    finally:
        try:
            mailbox.close()
        except (imaplib.IMAP4.error, poplib.error_proto, OSError) as e:
            logger.warning(f"Error closing mailbox: {e}")


# ============================================
# Processing
# ============================================

def process_message(analyzer: ReportAnalyzer, raw: bytes, analyst: str, db_path=None):
    """Analyze one raw bounce; returns the Analysis and the stored row id (or None)"""
    msg = email.message_from_bytes(raw)
    parts = message_to_parts(msg)
    analysis = analyzer.analyze(parts)
    row_id = insert_analysis(analysis, analyst, parts, db_path=db_path)
    return analysis, row_id


def process_mailbox(settings: Optional[Settings] = None) -> Dict[str, int]:
    """Connect to the bounce mailbox and analyze every message in it"""
    settings = settings or load_config()
    init_db(settings.db_path)

    analyzer = ReportAnalyzer(SqliteSentMailIndex(settings.db_path), settings.analyzer)
    stats = {"processed": 0, "stored": 0, "skipped": 0}

    with open_mailbox(settings.connector) as mailbox:
        for num, raw in mailbox.messages():
            logger.debug(f"Analyzing message {num}")
            try:
                _, row_id = process_message(analyzer, raw, settings.analyst, settings.db_path)
            except Exception as e:
                logger.error(f"Error analyzing message {num}: {e}", exc_info=True)
                stats["skipped"] += 1
                continue

            stats["processed"] += 1
            if row_id is not None:
                stats["stored"] += 1

            # Only stored analyses are removed; anything else stays for a later run or a human
            if settings.connector.delete_processed and row_id is not None:
                mailbox.delete(num)

    logger.info(f"Mailbox done: {stats['processed']} analyzed, {stats['stored']} stored, {stats['skipped']} skipped")
    return stats


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Analyze bounce reports from the bounce mailbox")
    parser.add_argument("--env-file", default=None, help="Path to the .env settings file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")

    settings = load_config(args.env_file)
    try:
        process_mailbox(settings)
    except MailboxError as e:
        logger.error(f"Error processing mailbox: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
