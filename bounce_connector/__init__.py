"""
Bounce report analysis.

Classifies non-delivery reports and recovers the recipient of the
message that bounced.
"""

from .addresses import extract_addresses
from .analyzer import ReportAnalyzer, analyze
from .bounce_rules import code_from_text
from .config import AnalyzerConfig, load_config
from .models import Analysis, InMemorySentMailIndex, ReportPart
from .recipients import RecipientResolver, most_frequent_mail

__all__ = [
    "Analysis",
    "AnalyzerConfig",
    "InMemorySentMailIndex",
    "RecipientResolver",
    "ReportAnalyzer",
    "ReportPart",
    "analyze",
    "code_from_text",
    "extract_addresses",
    "load_config",
    "most_frequent_mail",
]
