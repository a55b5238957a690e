"""
Bounce report analysis.

Walks a decomposed report once: headers and body text decide the
failure code, then the recipient resolver recovers who the bounced
message was sent to. Malformed or irrelevant input yields an empty
Analysis instead of an exception.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from .bounce_rules import CODE_FAILED_RECIPIENTS, code_from_headers, code_from_text, has_failed_recipients
from .config import AnalyzerConfig
from .models import Analysis, Report, SentMailIndex
from .recipients import RecipientResolver

logger = logging.getLogger(__name__)


def classify_report(report: Report) -> str:
    code = code_from_headers(report.headers)
    if code:
        return code

    for text in report.parts:
        code = code_from_text(text)
        if code:
            return code

    if has_failed_recipients(report.headers):
        return CODE_FAILED_RECIPIENTS

    return ""


class ReportAnalyzer:
    """Turns report parts into an Analysis record."""

    def __init__(self, index: SentMailIndex, config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()
        self.resolver = RecipientResolver(index, self.config)

    def analyze(self, report_parts: Any, now: Optional[datetime] = None) -> Analysis:
        report = Report.from_parts(report_parts)
        if report is None:
            logger.debug("Report is not a list of at least two parts, nothing to analyze")
            return Analysis()

        code = classify_report(report)
        if not code:
            logger.debug("No bounce code found, skipping recipient resolution")
            return Analysis()

        resolution = self.resolver.resolve(report.parts, now=now)
        logger.info(f"Analysis: code={code}, mail={resolution.mail or '-'}, header_id={resolution.header_id or '-'}")
        return Analysis(header_id=resolution.header_id, code=code, mail=resolution.mail)


def analyze(report_parts: Any, index: SentMailIndex, config: Optional[AnalyzerConfig] = None,
            now: Optional[datetime] = None) -> Analysis:
    return ReportAnalyzer(index, config).analyze(report_parts, now=now)
