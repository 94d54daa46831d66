"""
Service code normalizer and validator.

Turns a raw extracted token into either a ServiceCode or a CodeRejection.
There is no partially-valid state and no confidence score: a token is a code
or it is not.

Validation order:
  1. Clean       — strip "CPT"/"HCPCS"/"CODE:"/"PROCEDURE" prefixes, a leading
                   '#', surrounding punctuation; upper-case. Leading billing
                   words are dropped when a code follows them ("VISIT 99213"),
                   and a split letter prefix is rejoined ("A 4550")
  2. Length      — 4..10 characters after cleaning
  3. Dictionary  — the token is a common billing word
  4. Alphabetic  — purely alphabetic tokens are words, not codes
  5. Modifier    — exactly "code MOD" / "code-MOD", or a concatenated
                   2-character suffix
  6. Family      — 5 digits (NUMERIC), letter + 4 digits (LETTER_PREFIXED),
                   bare 4 digits (REVENUE)
  7. Embedded    — one procedure code among words ("99213-ABC"); any other
                   digit run ("10001-1234", "2024-03-01") means it is not a code
  8. Leading word — "LEVEL 4" is rejected citing the dictionary word

Pure functions only — no I/O, no logging on the hot path.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


# ── Result types ──────────────────────────────────────────────────────────────


class CodeSystem(str, Enum):
    NUMERIC = "numeric"  # 5-digit procedure code (CPT)
    LETTER_PREFIXED = "letter_prefixed"  # HCPCS Level II
    REVENUE = "revenue"  # 4-digit UB-04 revenue code
    UNKNOWN = "unknown"


class RejectionKind(str, Enum):
    EMPTY = "empty"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    DICTIONARY_WORD = "dictionary_word"
    ALPHABETIC = "alphabetic"
    UNRECOGNIZED_FORMAT = "unrecognized_format"


@dataclass(frozen=True)
class ServiceCode:
    code: str
    system: CodeSystem
    raw_token: str
    modifier: Optional[str] = None

    @property
    def display(self) -> str:
        return f"{self.code}-{self.modifier}" if self.modifier else self.code


@dataclass(frozen=True)
class CodeRejection:
    raw_token: str
    kind: RejectionKind
    reason: str
    system: CodeSystem = field(default=CodeSystem.UNKNOWN, init=False)


CodeVerdict = Union[ServiceCode, CodeRejection]


@dataclass
class BatchValidation:
    accepted: list[ServiceCode] = field(default_factory=list)
    rejected: list[tuple[str, str]] = field(default_factory=list)  # (token, reason)


# ── Patterns ──────────────────────────────────────────────────────────────────

NUMERIC_PATTERN = re.compile(r"^\d{5}$")
LETTER_PREFIXED_PATTERN = re.compile(r"^[A-Z]\d{4}$")
REVENUE_PATTERN = re.compile(r"^\d{4}$")
MODIFIER_PATTERN = re.compile(r"^[A-Z0-9]{2}$")

# Concatenated suffixes: "93976TC", "A4570NU", "9921325"
_INLINE_NUMERIC_ALPHA = re.compile(r"^(\d{5})([A-Z]{2})$")
_INLINE_NUMERIC_DIGITS = re.compile(r"^(\d{5})(\d{2})$")
_INLINE_LETTER_PREFIXED = re.compile(r"^([A-Z]\d{4})([A-Z0-9]{2})$")

_SEPARATORS = re.compile(r"[\s\-]+")
_NON_ALNUM = re.compile(r"[^A-Z0-9]+")
_SPLIT_LETTER_PREFIXED = re.compile(r"^([A-Z])[\s\-]+(\d{4})$")

_PREFIXES = [
    re.compile(r"^CPT[\s:.\-]*"),
    re.compile(r"^HCPCS[\s:.\-]*"),
    re.compile(r"^CODE[\s:.\-]*"),
    re.compile(r"^PROCEDURE[\s:.\-]*"),
    re.compile(r"^#"),
]
_LEADING_PUNCT = re.compile(r"""^[.,;:()\[\]{}"']+""")
_TRAILING_PUNCT = re.compile(r"""[.,;:()\[\]{}"']+$""")

# Two-digit numeric modifiers in active use. A concatenated 7-digit token is
# only split when the suffix is one of these; otherwise it is not a code.
NUMERIC_MODIFIERS = frozenset(
    {"22", "23", "24", "25", "26", "27", "32", "47", "50", "51", "52", "53",
     "54", "55", "56", "57", "58", "59", "62", "63", "66", "76", "77", "78",
     "79", "80", "81", "82", "90", "91", "92", "95", "96", "97", "99"}
)

# Words that show up next to codes on bills and statements. Naive pattern
# matching over free text otherwise picks them up as codes.
BILLING_WORDS = frozenset({
    "LEVEL", "VISIT", "TOTAL", "CHARGE", "CHARGES", "SERVICE", "PRICE", "AMOUNT",
    "PATIENT", "PROVIDER", "HOSPITAL", "CLINIC", "DOCTOR", "NURSE",
    "DATE", "TIME", "PAGE", "BILL", "STATEMENT", "INVOICE", "ACCOUNT",
    "BALANCE", "PAYMENT", "CREDIT", "DEBIT", "INSURANCE", "COPAY",
    "DEDUCTIBLE", "COINSURANCE", "ALLOWED", "BILLED", "PAID", "DUE",
    "DESCRIPTION", "CODE", "PROCEDURE", "DIAGNOSIS", "MODIFIER",
    "UNIT", "UNITS", "QTY", "QUANTITY", "EACH", "ROOM", "EMERGENCY",
    "FACILITY", "OFFICE", "OUTPATIENT", "INPATIENT", "AMBULATORY",
    "PHARMACY", "LABORATORY", "RADIOLOGY", "SURGICAL", "MEDICAL",
    "HEALTH", "CARE", "NAME", "ADDRESS", "PHONE", "FAX", "EMAIL",
    "NOTES", "COMMENTS", "REMARKS", "TYPE", "CLASS", "STATUS",
    "APPROVED", "DENIED", "PENDING", "PROCESSED", "CLAIM", "NUMBER",
    "REF", "REFERENCE", "AUTH", "AUTHORIZATION", "PRIOR", "PRE",
    "POST", "FOLLOW", "FOLLOWUP", "CONSULT", "CONSULTATION",
    "EVAL", "EVALUATION", "EXAM", "EXAMINATION", "TEST", "TESTING",
    "RESULT", "RESULTS", "REPORT", "REPORTS", "SPECIMEN", "SAMPLE",
    "BLOOD", "URINE", "TISSUE", "FLUID", "SCAN", "IMAGING",
    "XRAY", "MRI", "CT", "PET", "ULTRASOUND", "ECHO", "EKG", "ECG",
    "SURGERY", "OPERATION", "ANESTHESIA", "RECOVERY", "ICU",
    "SUPPLY", "SUPPLIES", "EQUIPMENT", "DEVICE", "DRUG", "MEDICATION",
    "RX", "PRESCRIPTION", "INJECTION", "INFUSION", "THERAPY",
    "TREATMENT", "MANAGEMENT", "MONITORING", "SCREENING", "PREVENTION",
    "INITIAL", "SUBSEQUENT", "FINAL", "COMPLETE", "PARTIAL", "LIMITED",
    "SIMPLE", "COMPLEX", "MODERATE", "MINOR", "MAJOR", "ROUTINE",
    "STANDARD", "SPECIAL", "ADDITIONAL", "EXTRA", "OTHER", "MISC",
    "MISCELLANEOUS", "GENERAL", "SPECIFIC", "DETAILED", "COMPREHENSIVE",
    "HIGH", "LOW", "NORMAL", "ABNORMAL", "POSITIVE", "NEGATIVE",
    "PRIMARY", "SECONDARY", "TERTIARY", "MAIN", "SUB", "CATEGORY",
    "GROUP", "SECTION", "PART", "ITEM", "LINE", "ROW", "ENTRY",
    "TRUE", "FALSE", "YES", "NO", "NA", "N/A", "NONE", "NULL",
    "FROM", "TO", "FOR", "WITH", "WITHOUT", "AND", "OR", "THE", "A", "AN",
    "ER", "ED", "PT", "OT", "IV", "IM", "PO", "BID", "TID", "QID",
    "PRN", "STAT", "ASA", "BP", "HR", "RR", "TEMP", "HT", "WT", "BMI",
    "USD", "DOLLAR", "DOLLARS", "CENTS", "FEE", "FEES", "COST", "COSTS",
    "RATE", "RATES", "TAX", "TAXES", "DISCOUNT", "ADJUSTMENT", "WRITE",
    "WRITEOFF", "REFUND", "REBATE", "COLLECTION",
    "CMPLX", "EMERG", "MGMT", "MGMNT", "HCPCS", "ICD", "REV", "REVENUE", "CPT", "NDC",
})

MIN_TOKEN_LENGTH = 4
MAX_TOKEN_LENGTH = 10


# ── Public API ────────────────────────────────────────────────────────────────


def clean_token(raw_token: str) -> str:
    """Strip prefixes and surrounding punctuation; upper-case."""
    cleaned = raw_token.strip().upper()
    for prefix in _PREFIXES:
        cleaned = prefix.sub("", cleaned)
    cleaned = _LEADING_PUNCT.sub("", cleaned)
    cleaned = _TRAILING_PUNCT.sub("", cleaned)
    return cleaned.strip()


def validate(raw_token: Optional[str]) -> CodeVerdict:
    """
    Normalize and validate a single raw token.

    Returns a ServiceCode on success, otherwise a CodeRejection whose
    `reason` is safe to show to a user.
    """
    if raw_token is None or not str(raw_token).strip():
        return CodeRejection(str(raw_token or ""), RejectionKind.EMPTY, "Empty token")

    raw = str(raw_token)
    cleaned = _drop_leading_words(clean_token(raw))

    if len(cleaned) < MIN_TOKEN_LENGTH:
        return CodeRejection(
            raw, RejectionKind.TOO_SHORT,
            f"Token too short ({len(cleaned)} < {MIN_TOKEN_LENGTH} characters): {cleaned!r}",
        )
    if len(cleaned) > MAX_TOKEN_LENGTH:
        return CodeRejection(
            raw, RejectionKind.TOO_LONG,
            f"Token too long ({len(cleaned)} > {MAX_TOKEN_LENGTH} characters): {cleaned!r}",
        )

    if cleaned in BILLING_WORDS:
        return CodeRejection(
            raw, RejectionKind.DICTIONARY_WORD,
            f"Known billing word, not a code: {cleaned}",
        )

    if cleaned.isalpha():
        return CodeRejection(
            raw, RejectionKind.ALPHABETIC,
            f"Purely alphabetic token (a word, not a code): {cleaned!r}",
        )

    code, modifier = _split_modifier(cleaned)

    system = _code_system(code)
    if system is not None:
        if system == CodeSystem.REVENUE:
            modifier = None  # revenue codes do not take modifiers
        return ServiceCode(code=code, system=system, raw_token=raw, modifier=modifier)

    embedded = _embedded_code(cleaned)
    if embedded is not None:
        return ServiceCode(
            code=embedded[0], system=embedded[1], raw_token=raw, modifier=embedded[2]
        )

    word = _dictionary_word(cleaned)
    if word is not None:
        return CodeRejection(
            raw, RejectionKind.DICTIONARY_WORD,
            f"Known billing word, not a code: {word}",
        )

    return CodeRejection(
        raw, RejectionKind.UNRECOGNIZED_FORMAT,
        "Does not match a 5-digit procedure code, letter + 4-digit code, "
        f"or 4-digit revenue code: {cleaned!r}",
    )


def validate_batch(tokens: list[str]) -> BatchValidation:
    """
    Validate many tokens. Accepted codes are deduplicated by normalized code
    (first occurrence wins, input order kept); every rejection is reported.
    """
    result = BatchValidation()
    seen: set[str] = set()
    for token in tokens:
        verdict = validate(token)
        if isinstance(verdict, CodeRejection):
            result.rejected.append((token, verdict.reason))
            continue
        if verdict.code in seen:
            continue
        seen.add(verdict.code)
        result.accepted.append(verdict)
    return result


def extract_potential_codes(text: Optional[str]) -> list[str]:
    """
    Scan free text for code-shaped tokens (5 digits, letter + 4 digits, and
    either followed by a hyphenated modifier). Returns unique tokens in the
    order first seen; callers still run them through validate().
    """
    if not text:
        return []
    found: list[str] = []
    patterns = (
        r"\b(?:\d{5}|[A-Za-z]\d{4})-[A-Za-z0-9]{2}\b",
        r"\b\d{5}\b",
        r"\b[A-Za-z]\d{4}\b",
    )
    for pattern in patterns:
        for match in re.findall(pattern, text):
            token = match.upper()
            if token not in found:
                found.append(token)
    return found


# ── Private helpers ───────────────────────────────────────────────────────────


def _procedure_system(part: str) -> Optional[CodeSystem]:
    """NUMERIC or LETTER_PREFIXED only; a bare 4-digit run is never taken from a longer token."""
    system = _code_system(part)
    return system if system in (CodeSystem.NUMERIC, CodeSystem.LETTER_PREFIXED) else None


def _drop_leading_words(cleaned: str) -> str:
    match = _SPLIT_LETTER_PREFIXED.match(cleaned)
    if match:
        return match.group(1) + match.group(2)

    parts = [p for p in _SEPARATORS.split(cleaned) if p]
    skipped = 0
    while skipped < len(parts) - 1 and parts[skipped] in BILLING_WORDS:
        skipped += 1
    if skipped == 0:
        return cleaned

    rest = parts[skipped:]
    if _procedure_system(rest[0]) is None:
        return cleaned
    if len(rest) == 1 or (len(rest) == 2 and MODIFIER_PATTERN.match(rest[1])):
        return " ".join(rest)
    return cleaned


def _dictionary_word(cleaned: str) -> Optional[str]:
    leading = _SEPARATORS.split(cleaned, maxsplit=1)[0]
    return leading if leading in BILLING_WORDS else None


def _split_modifier(cleaned: str) -> tuple[str, Optional[str]]:
    """Separate a trailing 2-character modifier from the code, if present."""
    if "-" in cleaned or " " in cleaned:
        parts = [p for p in _SEPARATORS.split(cleaned) if p]
        if (
            len(parts) == 2
            and _code_system(parts[0]) is not None
            and MODIFIER_PATTERN.match(parts[1])
        ):
            return parts[0], parts[1]
        return cleaned, None

    match = _INLINE_NUMERIC_ALPHA.match(cleaned) or _INLINE_LETTER_PREFIXED.match(cleaned)
    if match:
        return match.group(1), match.group(2)

    match = _INLINE_NUMERIC_DIGITS.match(cleaned)
    if match and match.group(2) in NUMERIC_MODIFIERS:
        return match.group(1), match.group(2)

    return cleaned, None


def _code_system(code: str) -> Optional[CodeSystem]:
    if NUMERIC_PATTERN.match(code):
        return CodeSystem.NUMERIC
    if LETTER_PREFIXED_PATTERN.match(code):
        return CodeSystem.LETTER_PREFIXED
    if REVENUE_PATTERN.match(code):
        return CodeSystem.REVENUE
    return None


def _embedded_code(cleaned: str) -> Optional[tuple[str, CodeSystem, Optional[str]]]:
    """
    Find the single procedure code in a multi-part token. Every other part
    must be a word, except a modifier directly after the code.
    """
    parts = [p for p in _NON_ALNUM.split(cleaned) if p]
    found: Optional[tuple[str, CodeSystem]] = None
    modifier: Optional[str] = None
    previous_was_code = False
    for part in parts:
        system = _procedure_system(part)
        if system is not None:
            if found is not None:
                return None  # two codes in one token
            found = (part, system)
            previous_was_code = True
            continue
        if previous_was_code and part not in BILLING_WORDS and MODIFIER_PATTERN.match(part):
            modifier = part
        elif not part.isalpha():
            return None
        previous_was_code = False
    if found is None:
        return None
    return found[0], found[1], modifier
