# test_brand_similarity.py
import pytest

from threatlens.services.brand_registry import BrandRegistry
from threatlens.services.brand_similarity import (
    SimilarityFinding,
    levenshtein_distance,
    similarity_ratio,
    CHARACTER_SUBSTITUTION,
    CONTAINS_DIGITS,
    EXCESSIVE_HYPHENS,
    HOMOGRAPH_ATTACK,
    KEYWORD_COMBINATION,
    LOOKALIKE_DOMAIN,
    SECURITY_KEYWORD,
    SECURITY_TERM_ABUSE,
    SUSPICIOUS_PATTERN,
)
from threatlens.services.domain_normalizer import normalize


def categories(findings, brand=None):
    return {f.category for f in findings if brand is None or f.brand == brand}


class TestLevenshtein:
    @pytest.mark.parametrize("a,b,distance", [
        ("", "", 0),
        ("abc", "", 3),
        ("kitten", "sitting", 3),
        ("paypal.com", "paypa1.com", 1),
        ("google.com", "google.com", 0),
    ])
    def test_distance(self, a, b, distance):
        assert levenshtein_distance(a, b) == distance
        assert levenshtein_distance(b, a) == distance

    def test_ratio(self):
        assert similarity_ratio("paypal.com", "paypa1.com") == pytest.approx(0.9)
        assert similarity_ratio("", "") == 1.0


class TestBrandRegistry:
    def test_packaged_registry_loads(self, registry):
        assert len(registry) == 7
        assert registry.get("paypal") is not None
        assert "paypal.com" in registry.legitimate_domains

    def test_subdomains_of_legitimate_domains(self, registry):
        assert registry.is_legitimate("paypal.com")
        assert registry.is_legitimate("www.paypal.com")
        assert not registry.is_legitimate("paypal.com.evil.net")
        assert not registry.is_legitimate("notpaypal.com")

    def test_missing_file_gives_empty_registry(self, tmp_path):
        registry = BrandRegistry.load(str(tmp_path / "missing.json"))
        assert len(registry) == 0

    def test_custom_file(self, tmp_path):
        path = tmp_path / "brands.json"
        path.write_text('{"version": "2", "brands": {"Acme": {"legitimate": ["Acme.com"], '
                        '"suspicious": ["acme-login"], "keywords": ["rocket"]}}}', encoding="utf-8")
        registry = BrandRegistry.load(str(path))
        assert registry.version == "2"
        entry = registry.get("acme")
        assert entry.legitimate_domains == frozenset({"acme.com"})

    def test_entries_are_immutable(self, registry):
        assert isinstance(registry.entries, tuple)
        assert isinstance(registry.get("steam").keywords, frozenset)


class TestBrandSimilarityMatcher:
    """Impersonation heuristics against the packaged registry"""

    @pytest.mark.parametrize("domain", [
        "paypal.com", "google.com", "www.amazon.co.uk", "login.microsoft.com", "wa.me",
    ])
    def test_legitimate_domains_have_no_findings(self, matcher, domain):
        assert matcher.find_similarities(normalize(domain)) == []

    def test_digit_substitution(self, matcher):
        findings = matcher.find_similarities(normalize("paypa1.com"))
        paypal = categories(findings, "paypal")
        assert CHARACTER_SUBSTITUTION in paypal
        assert LOOKALIKE_DOMAIN in paypal
        lookalike = next(f for f in findings if f.category == LOOKALIKE_DOMAIN)
        assert lookalike.matched == "paypal.com"
        assert lookalike.similarity == pytest.approx(0.9)
        assert CONTAINS_DIGITS in categories(findings)

    def test_cyrillic_lookalike(self, matcher):
        findings = matcher.find_similarities(normalize("paypaі.com"))
        assert HOMOGRAPH_ATTACK in categories(findings)
        assert categories(findings, "paypal") & {LOOKALIKE_DOMAIN, SUSPICIOUS_PATTERN}

    def test_full_cyrillic_homograph(self, matcher):
        findings = matcher.find_similarities(normalize("раураl.com"))
        assert CHARACTER_SUBSTITUTION in categories(findings, "paypal")
        homographs = [f for f in findings if f.category == HOMOGRAPH_ATTACK]
        # р, а, у are reported once each
        assert len(homographs) == 3

    def test_suspicious_pattern(self, matcher):
        findings = matcher.find_similarities(normalize("steamcummunity.ru"))
        pattern = [f for f in findings if f.category == SUSPICIOUS_PATTERN]
        assert pattern and pattern[0].brand == "steam"
        assert pattern[0].similarity == 1.0

    def test_keyword_combination(self, matcher):
        findings = matcher.find_similarities(normalize("free-csgo-skin.net"))
        combo = [f for f in findings if f.category == KEYWORD_COMBINATION]
        assert combo and combo[0].brand == "steam"

    def test_secure_login_combination(self, matcher):
        findings = matcher.find_similarities(normalize("paypa1-secure-login.com"))
        paypal = categories(findings, "paypal")
        assert CHARACTER_SUBSTITUTION in paypal
        assert KEYWORD_COMBINATION in paypal
        keywords = {f.matched for f in findings if f.category == SECURITY_KEYWORD}
        assert {"secure", "login"} <= keywords
        assert SECURITY_TERM_ABUSE in categories(findings)

    def test_excessive_hyphens(self, matcher):
        findings = matcher.find_similarities(normalize("my-bank-online-help-desk.com"))
        assert EXCESSIVE_HYPHENS in categories(findings)

    def test_short_labels_do_not_trigger_substitution(self, matcher):
        findings = matcher.find_similarities(normalize("w4-news.org"))
        assert CHARACTER_SUBSTITUTION not in categories(findings)

    def test_unrelated_domain_is_clean(self, matcher):
        assert matcher.find_similarities(normalize("example.org")) == []

    def test_ip_literal_has_no_digit_finding(self, matcher):
        findings = matcher.find_similarities(normalize("192.168.0.1"))
        assert CONTAINS_DIGITS not in categories(findings)

    @pytest.mark.parametrize("domain", [
        "paypa1-secure-login.com", "раураl.com", "g00gle-verify-account.tk",
        "amaz0n-prime-order-delivery.shop", "xn--80ak6aa92e.com",
    ])
    def test_similarity_always_in_range(self, matcher, domain):
        for finding in matcher.find_similarities(normalize(domain)):
            assert 0.0 <= finding.similarity <= 1.0

    def test_finding_rejects_out_of_range_similarity(self):
        with pytest.raises(ValueError):
            SimilarityFinding(category=LOOKALIKE_DOMAIN, similarity=1.2, reason="x")
