"""Tests for domain list validation."""

from provisioner.utils.domains import (
    is_valid_domain,
    normalize_domain,
    parse_adsense_id,
    validate_domains,
)


class TestNormalizeDomain:
    def test_strips_scheme_path_and_case(self):
        assert normalize_domain("  HTTPS://Example.COM/wp-admin ") == "example.com"

    def test_trailing_dot(self):
        assert normalize_domain("example.com.") == "example.com"


class TestIsValidDomain:
    def test_valid(self):
        assert is_valid_domain("example.com")
        assert is_valid_domain("shop.example.co.uk")
        assert is_valid_domain("my-site1.io")

    def test_invalid(self):
        assert not is_valid_domain("localhost")
        assert not is_valid_domain("-bad.com")
        assert not is_valid_domain("bad_domain.com")
        assert not is_valid_domain("example.c0m")
        assert not is_valid_domain("a" * 64 + ".com")


class TestValidateDomains:
    def test_splits_valid_invalid_duplicates(self):
        result = validate_domains(
            ["example.com", "Example.com ", "not a domain", "", "other.org", "other.org"]
        )

        assert result.valid == ["example.com", "other.org"]
        assert result.invalid == ["not a domain"]
        assert result.duplicates == ["Example.com ", "other.org"]
        assert result.has_rejections

    def test_clean_list(self):
        result = validate_domains(["a.com", "b.com"])
        assert result.valid == ["a.com", "b.com"]
        assert not result.has_rejections


class TestAdsenseEntries:
    def test_parse_adsense_id(self):
        assert parse_adsense_id("1234567890123456") == "1234567890123456"
        assert parse_adsense_id(" pub-1234567890123456 ") == "1234567890123456"
        assert parse_adsense_id("ca-pub-1234567890123456") == "1234567890123456"
        assert parse_adsense_id("pub-12ab") is None
        assert parse_adsense_id("123") is None

    def test_entries_carry_publisher_id(self):
        result = validate_domains(["A.com|1234567890123456", "b.com", "c.com|"])

        assert result.valid == ["a.com", "b.com", "c.com"]
        assert result.meta == {"a.com": {"adsense_id": "1234567890123456"}}
        assert result.has_adsense_ids
        assert not result.has_rejections

    def test_malformed_publisher_id_rejects_entry(self):
        result = validate_domains(["a.com|not-an-id", "b.com"])

        assert result.valid == ["b.com"]
        assert result.invalid == ["a.com|not-an-id"]
        assert result.meta == {}
        assert not result.has_adsense_ids

    def test_duplicates_ignore_publisher_id(self):
        result = validate_domains(["a.com|1234567890123456", "a.com|6543210987654321"])

        assert result.valid == ["a.com"]
        assert result.duplicates == ["a.com|6543210987654321"]
        assert result.meta["a.com"]["adsense_id"] == "1234567890123456"
