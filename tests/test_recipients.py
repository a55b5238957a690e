"""
Tests for recipient recovery.
"""

from datetime import timedelta

import pytest

from bounce_connector.config import AnalyzerConfig
from bounce_connector.errors import SentMailLookupError
from bounce_connector.recipients import RecipientResolver, most_frequent_mail


class FailingIndex:
    """Index whose backing store is down."""

    def lookup(self, identifier):
        raise SentMailLookupError("database is locked")

    def recently_sent_to(self, address, since):
        raise SentMailLookupError("database is locked")


class BrokenIndex:
    """Third-party index that fails with its own exception type."""

    def lookup(self, identifier):
        raise RuntimeError("connection reset by peer")

    def recently_sent_to(self, address, since):
        raise RuntimeError("connection reset by peer")


class TestMostFrequentMail:

    def test_tie_is_undetermined(self):
        parts = ["a@x.com a@x.com a@x.com", "b@x.com b@x.com b@x.com"]
        assert most_frequent_mail(parts) == ""

    def test_strictly_greater_count_wins(self):
        parts = ["a@x.com a@x.com a@x.com b@x.com b@x.com"]
        assert most_frequent_mail(parts) == "a@x.com"

    def test_counts_are_totals_across_parts(self):
        parts = ["b@x.com b@x.com a@x.com", "a@x.com", "a@x.com"]
        assert most_frequent_mail(parts) == "a@x.com"

    def test_only_top_two_counts_matter(self):
        parts = ["a@x.com a@x.com a@x.com b@x.com b@x.com c@x.com c@x.com"]
        assert most_frequent_mail(parts) == "a@x.com"

    def test_single_candidate(self):
        assert most_frequent_mail(["only@x.com"]) == "only@x.com"

    def test_no_candidates(self):
        assert most_frequent_mail(["no addresses here"]) == ""
        assert most_frequent_mail([]) == ""

    def test_ignored_addresses_are_removed(self):
        parts = ["postmaster@x.com postmaster@x.com jane@x.com"]
        assert most_frequent_mail(parts, ignored_mails={"Postmaster@x.com"}) == "jane@x.com"

    def test_restriction_set(self):
        parts = ["a@x.com a@x.com a@x.com b@x.com"]
        assert most_frequent_mail(parts, restrict_to=["b@x.com", "c@x.com"]) == "b@x.com"

    def test_restriction_set_without_mentions(self):
        assert most_frequent_mail(["a@x.com"], restrict_to=["z@x.com"]) == ""

    def test_addresses_compare_case_insensitively(self):
        parts = ["Jane@X.com jane@x.com bob@x.com"]
        assert most_frequent_mail(parts) == "jane@x.com"


class TestRecipientResolver:

    def test_single_recorded_recipient(self, index, config, now):
        index.record("abc123", "jane@example.com", now)
        resolver = RecipientResolver(index, config)

        parts = ["X-Bounce-Connector-Id: abc123\nother@x.com other@x.com other@x.com"]
        result = resolver.resolve(parts, now=now)

        assert result.header_id == "abc123"
        assert result.mail == "jane@example.com"

    def test_several_recorded_recipients_pick_most_mentioned(self, index, config, now):
        index.record("abc123", "a@example.com", now)
        index.record("abc123", "b@example.com", now)
        resolver = RecipientResolver(index, config)

        parts = [
            "Delivery to a@example.com failed: a@example.com unknown",
            "X-Bounce-Connector-Id: abc123\nTo: a@example.com\nCc: b@example.com",
        ]
        result = resolver.resolve(parts, now=now)

        assert result.header_id == "abc123"
        assert result.mail == "a@example.com"

    def test_several_recorded_recipients_tie_does_not_fall_back(self, index, now):
        index.record("abc123", "a@example.com", now)
        index.record("abc123", "b@example.com", now)
        index.record("other", "c@example.com", now)
        resolver = RecipientResolver(index, AnalyzerConfig(fallback_search=True))

        parts = ["X-Bounce-Connector-Id: abc123\na@example.com b@example.com c@example.com c@example.com c@example.com"]
        result = resolver.resolve(parts, now=now)

        assert result.header_id == "abc123"
        assert result.mail == ""

    def test_unknown_identifier_keeps_scanning(self, index, config, now):
        index.record("known", "jane@example.com", now)
        resolver = RecipientResolver(index, config)

        parts = ["X-Bounce-Connector-Id: forged", "X-Bounce-Connector-Id: known"]
        result = resolver.resolve(parts, now=now)

        assert result.header_id == "known"
        assert result.mail == "jane@example.com"

    def test_unknown_identifier_without_fallback(self, index, config, now):
        resolver = RecipientResolver(index, config)

        result = resolver.resolve(["X-Bounce-Connector-Id: forged jane@example.com"], now=now)

        assert result.header_id == "forged"
        assert result.mail == ""

    def test_header_name_is_matched_case_insensitively(self, index, config, now):
        index.record("abc123", "jane@example.com", now)
        resolver = RecipientResolver(index, config)

        result = resolver.resolve(["x-bounce-connector-id:abc123"], now=now)

        assert result.mail == "jane@example.com"

    def test_header_name_must_not_be_a_suffix(self, index, config, now):
        index.record("abc123", "jane@example.com", now)
        resolver = RecipientResolver(index, config)

        result = resolver.resolve(["X-Original-X-Bounce-Connector-Id: abc123"], now=now)

        assert result.header_id == ""
        assert result.mail == ""

    def test_custom_header_name(self, index, now):
        index.record("42", "jane@example.com", now)
        resolver = RecipientResolver(index, AnalyzerConfig(header_name="X-Mail-Ref"))

        result = resolver.resolve(["X-Mail-Ref: 42"], now=now)

        assert result.mail == "jane@example.com"

    def test_fallback_accepts_recently_mailed_address(self, index, now):
        index.record("abc123", "jane@example.com", now - timedelta(minutes=10))
        resolver = RecipientResolver(index, AnalyzerConfig(fallback_search=True))

        parts = ["jane@example.com could not be reached", "Original-Recipient: jane@example.com bob@example.com"]
        result = resolver.resolve(parts, now=now)

        assert result.header_id == ""
        assert result.mail == "jane@example.com"

    def test_fallback_rejects_address_not_recently_mailed(self, index, now):
        index.record("abc123", "jane@example.com", now - timedelta(hours=2))
        resolver = RecipientResolver(index, AnalyzerConfig(fallback_search=True))

        result = resolver.resolve(["jane@example.com jane@example.com"], now=now)

        assert result.mail == ""

    def test_fallback_window_is_configurable(self, index, now):
        index.record("abc123", "jane@example.com", now - timedelta(hours=2))
        config = AnalyzerConfig(fallback_search=True, recent_window=timedelta(hours=3))
        resolver = RecipientResolver(index, config)

        result = resolver.resolve(["jane@example.com"], now=now)

        assert result.mail == "jane@example.com"

    def test_fallback_disabled(self, index, config, now):
        index.record("abc123", "jane@example.com", now)
        resolver = RecipientResolver(index, config)

        assert resolver.resolve(["jane@example.com"], now=now).mail == ""

    def test_fallback_skips_ignored_addresses(self, index, now):
        index.record("abc123", "jane@example.com", now)
        index.record("abc123", "mailer-daemon@example.com", now)
        config = AnalyzerConfig(fallback_search=True, ignored_mails=frozenset({"mailer-daemon@example.com"}))
        resolver = RecipientResolver(index, config)

        parts = ["mailer-daemon@example.com mailer-daemon@example.com jane@example.com"]
        assert resolver.resolve(parts, now=now).mail == "jane@example.com"

    def test_fallback_runs_after_unknown_identifier(self, index, now):
        index.record("abc123", "jane@example.com", now)
        resolver = RecipientResolver(index, AnalyzerConfig(fallback_search=True))

        result = resolver.resolve(["X-Bounce-Connector-Id: forged\njane@example.com"], now=now)

        assert result.header_id == "forged"
        assert result.mail == "jane@example.com"

    @pytest.mark.parametrize("index_cls", [FailingIndex, BrokenIndex])
    @pytest.mark.parametrize("fallback", [False, True])
    def test_lookup_failure_is_treated_as_not_found(self, index_cls, fallback, now):
        resolver = RecipientResolver(index_cls(), AnalyzerConfig(fallback_search=fallback))

        result = resolver.resolve(["X-Bounce-Connector-Id: abc123\njane@example.com"], now=now)

        assert result.header_id == "abc123"
        assert result.mail == ""
