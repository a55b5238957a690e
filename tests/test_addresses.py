"""
Tests for address extraction.
"""

from bounce_connector.addresses import extract_addresses, extract_domain, iter_addresses


class TestExtractAddresses:

    def test_finds_addresses_in_order_with_duplicates(self):
        text = "To: jane@example.com\nCc: bob@example.org\n<jane@example.com> bounced"
        assert extract_addresses(text) == ["jane@example.com", "bob@example.org", "jane@example.com"]

    def test_addresses_inside_html(self):
        text = '<a href="mailto:info@shop.example.co.uk">info@shop.example.co.uk</a>'
        assert extract_addresses(text) == ["info@shop.example.co.uk", "info@shop.example.co.uk"]

    def test_plus_and_dots_in_local_part(self):
        assert extract_addresses("first.last+tag@example.com") == ["first.last+tag@example.com"]

    def test_trailing_sentence_dot_is_not_part_of_address(self):
        assert extract_addresses("Delivery to jane@example.com.") == ["jane@example.com"]

    def test_no_addresses(self):
        assert extract_addresses("nothing to see @ here") == []
        assert extract_addresses("") == []

    def test_iterator_is_restartable(self):
        text = "a@x.com b@x.com"
        assert list(iter_addresses(text)) == list(iter_addresses(text))


class TestExtractDomain:

    def test_domain_is_lower_cased(self):
        assert extract_domain("Jane@Example.COM") == "example.com"

    def test_unknown_without_address(self):
        assert extract_domain("") == "unknown"
