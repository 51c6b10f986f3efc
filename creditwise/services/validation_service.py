# creditwise/services/validation_service.py
"""
Input Validation Service for CreditWise.

Keeps input classification out of the flow engine: the engine decides which
transition to take, handlers coordinate, and this service answers questions
such as "is this a consent?" or "is this a usable diagnostic answer?".
"""

from typing import Optional, Dict, Any, Iterable
from dataclasses import dataclass
import logging
import re

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of input validation"""
    valid: bool
    error_type: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


# Stems matched anywhere in the input
AFFIRMATIVE_SUBSTRINGS = ("agree", "yes", "соглас", "accept", "принимаю")

# Short tokens matched as whole words only ("да" is part of "надо")
AFFIRMATIVE_WORDS = ("да", "ok", "ок", "okay")

# Any of these as a whole word vetoes consent ("Не согласен", "I don't agree")
NEGATION_WORDS = ("не", "нет", "no", "not", "don't", "dont", "disagree", "decline")


def _word_patterns(words: Iterable[str]):
    return [re.compile(r'(?<!\w)' + re.escape(word.lower()) + r'(?!\w)') for word in words]


class ValidationService:
    """
    Centralized validation for conversational inputs.

    All checks are deterministic string matching so the local interpreter
    needs no generative call to advance the scripted part of the flow.
    """

    MAX_INPUT_LENGTH = 4000

    def __init__(
        self,
        affirmative_substrings: Iterable[str] = AFFIRMATIVE_SUBSTRINGS,
        affirmative_words: Iterable[str] = AFFIRMATIVE_WORDS,
        negation_words: Iterable[str] = NEGATION_WORDS
    ):
        self.logger = logger
        self.affirmative_substrings = tuple(s.lower() for s in affirmative_substrings)
        self._affirmative_word_patterns = _word_patterns(affirmative_words)
        self._negation_patterns = _word_patterns(negation_words)

    def is_affirmative(self, user_input: str) -> bool:
        """Case-insensitive match against the consent vocabulary"""
        text_lower = (user_input or "").lower().strip()
        if not text_lower:
            return False

        if any(pattern.search(text_lower) for pattern in self._negation_patterns):
            return False

        if any(stem in text_lower for stem in self.affirmative_substrings):
            return True

        return any(pattern.search(text_lower) for pattern in self._affirmative_word_patterns)

    def validate_message(self, user_input: Optional[str]) -> ValidationResult:
        """
        Validate a raw chat message before it enters the pipeline.

        Args:
            user_input: Text typed by the user

        Returns:
            ValidationResult with validation outcome
        """
        text = (user_input or "").strip()

        if not text:
            return ValidationResult(
                valid=False,
                error_type="empty_input",
                message="Message cannot be empty"
            )

        if len(text) > self.MAX_INPUT_LENGTH:
            return ValidationResult(
                valid=False,
                error_type="input_too_long",
                message=f"Message is too long (max {self.MAX_INPUT_LENGTH} characters)",
                details={
                    "max_length": self.MAX_INPUT_LENGTH,
                    "actual_length": len(text)
                }
            )

        return ValidationResult(valid=True)

    def normalize_answer(self, user_input: Optional[str]) -> str:
        """Diagnostic answers and jurisdictions are stored as typed, minus outer whitespace"""
        return (user_input or "").strip()
