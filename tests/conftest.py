"""
Pytest configuration and fixtures for all tests.
"""

import os
from datetime import datetime, timezone

import pytest

from bounce_connector.config import AnalyzerConfig
from bounce_connector.models import InMemorySentMailIndex, ReportPart

HEADER = "X-Bounce-Connector-Id"


@pytest.fixture(autouse=True)
def restore_environ():
    """load_dotenv writes straight into os.environ; undo it after each test."""
    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


@pytest.fixture
def now():
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def index():
    return InMemorySentMailIndex()


@pytest.fixture
def config():
    return AnalyzerConfig()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "bounces.db")


def make_report(headers, *texts):
    """Build the part list an upstream decoder would hand over."""
    parts = [ReportPart(data=dict(headers), charset="utf-8")]
    parts.extend(ReportPart(data=text, charset="utf-8") for text in texts)
    return parts
