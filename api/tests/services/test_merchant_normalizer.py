"""Unit tests for merchant_normalizer — pure functions, no DB."""
from app.services.merchant_normalizer import (
    extract_display_name,
    is_account_key,
    is_same_merchant,
    normalize_merchant,
    normalize_text,
)


# ── normalize_merchant — counterparty identifiers ───────────────────────────

class TestAccountKeys:
    def test_iban_tag_is_stripped(self):
        assert normalize_merchant("IBAN:NL91ABNA0417164300", "whatever") == "IBAN:NL91ABNA0417164300"

    def test_iban_spacing_and_case_ignored(self):
        assert normalize_merchant("nl91 abna 0417 1643 00", None) == "IBAN:NL91ABNA0417164300"

    def test_iban_wins_over_description(self):
        a = normalize_merchant("NL91ABNA0417164300", "Netflix januari 2026")
        b = normalize_merchant("NL91ABNA0417164300", "Something else entirely")
        assert a == b

    def test_plain_account_number(self):
        assert normalize_merchant("123456789", "Rent") == "ACCT:123456789"

    def test_short_number_is_not_an_account(self):
        assert normalize_merchant("12345", "Rent June") == "rent june"


# ── normalize_merchant — text fallback ──────────────────────────────────────

class TestTextKeys:
    def test_payee_name_used_when_not_generic(self):
        assert normalize_merchant("Netflix.com", "Ref: 99887766") == "netflix com"

    def test_generic_payee_falls_back_to_description(self):
        key = normalize_merchant("Unknown", "Spotify AB 12-01-2026 Ref: 99887766")
        assert key == "spotify ab"

    def test_missing_counterparty_uses_description(self):
        assert normalize_merchant(None, "Spotify AB") == "spotify ab"

    def test_monthly_references_collapse_to_one_key(self):
        jan = normalize_merchant(None, "Vattenfall termijnbedrag januari 2026 nr 123456")
        feb = normalize_merchant(None, "Vattenfall termijnbedrag februari 2026 nr 123457")
        assert jan == feb == "vattenfall termijnbedrag"

    def test_trailing_store_number_stripped(self):
        assert normalize_merchant(None, "SHELL #1234") == "shell"

    def test_card_number_stripped(self):
        assert normalize_merchant(None, "AH to go ****1234") == "ah to go"

    def test_words_starting_with_ref_survive(self):
        assert normalize_text("Refund Bol.com") == "refund bol com"

    def test_nothing_discriminating_returns_empty(self):
        assert normalize_merchant(None, None) == ""
        assert normalize_merchant("", "   ") == ""
        assert normalize_merchant("n/a", "Payment") == ""

    def test_key_is_capped(self):
        assert len(normalize_merchant(None, "x" * 400)) == 255


# ── extract_display_name ─────────────────────────────────────────────────────

class TestDisplayName:
    def test_first_segment_title_cased(self):
        assert extract_display_name("ALBERT HEIJN 1234, Amsterdam") == "Albert Heijn 1234"

    def test_falls_back_to_payee(self):
        assert extract_display_name(None, "eneco retail") == "Eneco Retail"

    def test_account_counterparty_is_not_a_name(self):
        assert extract_display_name(None, "NL91ABNA0417164300") == "Unknown"

    def test_long_names_truncated(self):
        name = extract_display_name("a" * 80)
        assert len(name) == 50
        assert name.endswith("...")


# ── is_same_merchant ─────────────────────────────────────────────────────────

class TestSameMerchant:
    def test_exact(self):
        assert is_same_merchant("netflix com", "netflix com")

    def test_near_identical_text(self):
        assert is_same_merchant("netflix com", "netflix com nl")

    def test_different_merchants(self):
        assert not is_same_merchant("netflix com", "spotify ab")

    def test_account_keys_never_fuzzy(self):
        assert not is_same_merchant("IBAN:NL91ABNA0417164300", "IBAN:NL91ABNA0417164301")
        assert is_account_key("ACCT:123456789")
        assert not is_account_key("netflix com")
