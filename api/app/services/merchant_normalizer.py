"""
Merchant normalizer — pure functions, no DB, fully unit-testable.

Turns the raw counterparty / description pair of a bank line into a stable
merchant key.  The key is the join key for recurring detection, so two lines
from the same real-world payee must land on the same string even when the
bank stamps a fresh date or reference number on every payment.

Key forms
─────────
  IBAN:NL91ABNA0417164300   counterparty is an IBAN (preferred)
  ACCT:123456789            counterparty is a plain account number
  netflix com               normalized payee or description text
  ""                        nothing discriminating left — caller skips it
"""
import re
from difflib import SequenceMatcher

MAX_KEY_LENGTH = 255
MAX_DISPLAY_NAME_LENGTH = 50
SIMILARITY_THRESHOLD = 0.85

IBAN_PREFIX = "IBAN:"
ACCOUNT_PREFIX = "ACCT:"

# ── Patterns ────────────────────────────────────────────────────────────────

_DATE_PATTERNS = [
    re.compile(r"\b\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}\b"),          # 31-01-2025, 1/2/25
    re.compile(r"\b\d{4}[-/.]\d{1,2}[-/.]\d{1,2}\b"),            # 2025-01-31
    re.compile(
        r"\b\d{1,2}\s+(jan|feb|mrt|mar|apr|mei|may|jun|jul|aug|sep|okt|oct|nov|dec)[a-z]*\b\.?",
        re.IGNORECASE,
    ),                                                            # 12 jan, 3 March
    re.compile(
        r"\b(januari|februari|maart|april|mei|juni|juli|augustus|september|oktober|november|december"
        r"|january|february|march|may|june|july|august|october)\s+\d{4}\b",
        re.IGNORECASE,
    ),                                                            # januari 2025
    re.compile(r"\b\d{1,2}:\d{2}(:\d{2})?\b"),                    # 14:05 time stamps
]

_REFERENCE_PATTERNS = [
    re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}[A-Z0-9]{0,16}\b"),   # embedded IBAN
    re.compile(r"\bref(?:erence)?[:.#\s]+[A-Z0-9-]*\d[A-Z0-9-]*\b", re.IGNORECASE),  # Ref: ABC123
    re.compile(r"\bnr[:.#\s]*[A-Z0-9-]*\d[A-Z0-9-]*\b", re.IGNORECASE),              # Nr: 12345
    re.compile(r"\b(order|factuur|invoice|inv)[:.#\s]*[A-Z0-9-]*\d[A-Z0-9-]*\b", re.IGNORECASE),
    re.compile(r"\b[A-Z]{2,4}\d{6,12}\b"),                             # AB123456
    re.compile(r"\b\d{10,16}\b"),                                      # long digit runs
    re.compile(r"\*{2,}\s*\d{4}\b"),                                   # card ****1234
]

_TRAILING_STORE_NUMBER = re.compile(r"\s*#\s*\d+\s*$")
_TRAILING_NUMBER = re.compile(r"(\s+\d+)+\s*$")
_PUNCTUATION = re.compile(r"[^\w\s&]")
_WHITESPACE = re.compile(r"\s+")
_DISPLAY_SPLIT = re.compile(r"\s{2,}|,|/|\|")

_IBAN_SHAPE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]+$")
_ACCOUNT_SHAPE = re.compile(r"^[A-Z0-9]{8,20}$")
_IBAN_TAG = re.compile(r"^\s*iban\s*[:#]?\s*", re.IGNORECASE)

# Payee strings that say nothing about who was paid
_GENERIC_PAYEES = frozenset({
    "", "n a", "na", "none", "null", "unknown", "onbekend", "transfer",
    "payment", "betaling", "overboeking", "incasso", "pos", "card payment",
    "online banking", "internetbankieren",
})


# ── Public API ───────────────────────────────────────────────────────────────

def normalize_merchant(counterparty: str | None, description: str | None) -> str:
    """
    Return the merchant key for one bank line.

    Prefers an account-like counterparty, then a meaningful payee name, then
    the description.  Deterministic and side-effect free.
    """
    account_key = _account_key(counterparty)
    if account_key:
        return account_key

    payee = normalize_text(counterparty or "")
    if payee not in _GENERIC_PAYEES and _has_letters(payee):
        return payee[:MAX_KEY_LENGTH]

    text = normalize_text(description or "")
    if text in _GENERIC_PAYEES:
        return ""
    return text[:MAX_KEY_LENGTH]


def normalize_text(raw: str) -> str:
    """Strip dates, references and noise; lowercase; collapse whitespace."""
    text = raw
    for pattern in _DATE_PATTERNS:
        text = pattern.sub(" ", text)
    for pattern in _REFERENCE_PATTERNS:
        text = pattern.sub(" ", text)

    text = text.lower()
    text = _PUNCTUATION.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _TRAILING_STORE_NUMBER.sub("", text)
    text = _TRAILING_NUMBER.sub("", text)
    return text.strip()


def extract_display_name(description: str | None, counterparty: str | None = None) -> str:
    """Human-friendly label: first meaningful segment of the description, title-cased."""
    for source in (description, counterparty):
        if not source or _account_key(source):
            continue
        cleaned = source
        for pattern in _DATE_PATTERNS + _REFERENCE_PATTERNS:
            cleaned = pattern.sub(" ", cleaned)
        parts = [p.strip(" .:;-") for p in _DISPLAY_SPLIT.split(cleaned)]
        parts = [p for p in parts if _has_letters(p)]
        if not parts:
            continue
        name = _WHITESPACE.sub(" ", parts[0]).title()
        if len(name) > MAX_DISPLAY_NAME_LENGTH:
            name = name[: MAX_DISPLAY_NAME_LENGTH - 3] + "..."
        return name
    return "Unknown"


def is_same_merchant(key1: str, key2: str) -> bool:
    """True when two merchant keys most likely name the same payee."""
    if key1 == key2:
        return True
    if is_account_key(key1) or is_account_key(key2):
        return False
    if not key1 or not key2:
        return False
    return SequenceMatcher(None, key1, key2).ratio() >= SIMILARITY_THRESHOLD


def is_account_key(key: str) -> bool:
    return key.startswith(IBAN_PREFIX) or key.startswith(ACCOUNT_PREFIX)


# ── Internals ────────────────────────────────────────────────────────────────

def _account_key(counterparty: str | None) -> str | None:
    if not counterparty:
        return None
    compact = _WHITESPACE.sub("", _IBAN_TAG.sub("", counterparty)).upper()
    if 15 <= len(compact) <= 34 and _IBAN_SHAPE.match(compact):
        return IBAN_PREFIX + compact
    if _ACCOUNT_SHAPE.match(compact) and sum(c.isdigit() for c in compact) >= 6:
        return ACCOUNT_PREFIX + compact
    return None


def _has_letters(text: str) -> bool:
    return any(c.isalpha() for c in text)
