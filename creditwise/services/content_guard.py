# creditwise/services/content_guard.py
"""
Content Guard for CreditWise.

Synchronous policy filters applied to every user input before metering and
before any backend is contacted, regardless of execution mode:

1. PII filter - emails, phone numbers, national-ID-like numbers. A hit
   blocks the send entirely; nothing is persisted.
2. Prohibited-action filter - denylisted phrases (document forgery, "guaranteed
   approval", tax evasion...). A hit produces a fixed refusal that is persisted
   while the conversation state stays unchanged.

Filters are independent objects; the guard runs them in order and stops at
the first violation. Policy data (patterns, phrases) is injected so it can be
swapped without touching the code.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Iterable, Pattern, Tuple

logger = logging.getLogger(__name__)

PII = "pii"
PROHIBITED = "prohibited"


@dataclass
class GuardVerdict:
    """Result of running user input through the guard"""
    allowed: bool
    violation: Optional[str] = None
    category: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_pii(self) -> bool:
        return self.violation == PII

    @property
    def is_prohibited(self) -> bool:
        return self.violation == PROHIBITED


ALLOWED = GuardVerdict(allowed=True)


DEFAULT_PII_PATTERNS: List[Tuple[str, str]] = [
    ("email", r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}"),
    # +7 (912) 345-67-89, 8 912 345 67 89, +49 151 2345 6789
    ("phone", r"(?<![\w])\+?\d{1,3}[\s\-.]?\(?\d{3}\)?[\s\-.]?\d{3}[\s\-.]?\d{2}[\s\-.]?\d{2,4}(?![\w])"),
    # 555-123-4567
    ("phone", r"(?<![\w])\(?\d{3}\)?[\s\-.]\d{3}[\s\-.]\d{4}(?![\w])"),
    # SSN 123-45-6789
    ("national_id", r"(?<![\w])\d{3}-\d{2}-\d{4}(?![\w])"),
    # SNILS 123-456-789 01
    ("national_id", r"(?<![\w])\d{3}-\d{3}-\d{3}[\s\-]\d{2}(?![\w])"),
    # Passport series and number 4510 123456
    ("national_id", r"(?<![\w])\d{4}\s\d{6}(?![\w])"),
    # INN and other long bare digit runs
    ("national_id", r"(?<![\w])\d{10,12}(?![\w])"),
]


class PIIFilter:
    """Detects personally identifiable information with regex patterns"""

    name = PII

    def __init__(self, patterns: Optional[Iterable[Tuple[str, str]]] = None):
        self.patterns: List[Tuple[str, Pattern]] = [
            (category, re.compile(pattern))
            for category, pattern in (patterns or DEFAULT_PII_PATTERNS)
        ]

    def check(self, text: str) -> GuardVerdict:
        for category, pattern in self.patterns:
            if pattern.search(text):
                return GuardVerdict(
                    allowed=False,
                    violation=PII,
                    category=category,
                    details={"filter": self.name}
                )
        return ALLOWED


class ProhibitedActionFilter:
    """Case-insensitive substring match against a denylist of phrases"""

    name = PROHIBITED

    def __init__(self, phrases: Iterable[str]):
        self.phrases = [p.lower().strip() for p in phrases if p and p.strip()]

    def check(self, text: str) -> GuardVerdict:
        text_lower = text.lower()
        for phrase in self.phrases:
            if phrase in text_lower:
                return GuardVerdict(
                    allowed=False,
                    violation=PROHIBITED,
                    category=phrase,
                    details={"filter": self.name}
                )
        return ALLOWED


class ContentGuard:
    """Runs the configured filters in order, first violation wins"""

    def __init__(self, filters: Optional[List[Any]] = None, prohibited_phrases: Optional[Iterable[str]] = None):
        if filters is None:
            if prohibited_phrases is None:
                from creditwise.core.config import settings
                prohibited_phrases = settings.PROHIBITED_PHRASES
            filters = [PIIFilter(), ProhibitedActionFilter(prohibited_phrases)]
        self.filters = filters

    def inspect(self, text: str) -> GuardVerdict:
        if not text:
            return ALLOWED

        for policy_filter in self.filters:
            verdict = policy_filter.check(text)
            if not verdict.allowed:
                logger.info(
                    f"Content guard blocked input: {verdict.violation} ({verdict.category if verdict.violation == PII else 'denylist'})"
                )
                return verdict
        return ALLOWED

    def is_prohibited(self, text: str) -> bool:
        """True if the prohibited-action filters alone reject the text"""
        return any(
            not f.check(text).allowed
            for f in self.filters
            if getattr(f, "name", None) == PROHIBITED
        )
