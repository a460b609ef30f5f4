"""Content policy gate.

Rejects questions that look like they come from an active, proctored or
confidential assessment. Evaluation is a pure function of the question
text and runs before any quota is touched, so a blocked question never
costs the caller anything.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from solvegate.app.core.logging import get_logger

logger = get_logger(__name__)

ASSESSMENT_BLOCK_MESSAGE = (
    "This content appears to be from an active assessment. "
    "Please use this tool only for homework and study purposes."
)

# (rule_id, pattern) pairs; matched case-insensitively on word boundaries
BLOCK_PATTERNS: List[Tuple[str, str]] = [
    ("assessment_term", r"\b(?:exams?|tests?|quiz(?:zes)?|assessments?|midterms?)\b"),
    ("proctored", r"\bproctor(?:ed|ing)?\b"),
    ("do_not_share", r"\bdo\s+not\s+(?:share|distribute|copy)\b"),
    ("confidential", r"\bconfidential\b"),
    ("honor_code", r"\bhonou?r\s+code\b"),
]


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of evaluating a question.

    Attributes:
        allowed: True if the question may proceed
        reason: Human-readable message for blocked questions
        rule_id: Identifier of the first rule that matched
    """

    allowed: bool
    reason: Optional[str] = None
    rule_id: Optional[str] = None


ALLOW = PolicyDecision(allowed=True)


class ContentPolicyGate:
    """Evaluate questions against assessment-integrity rules.

    Rules are compiled once at construction. The gate is stateless and safe
    to share between requests.

    Example:
        >>> gate = ContentPolicyGate()
        >>> gate.evaluate("final exam question 3, do not share").allowed
        False
    """

    def __init__(
        self,
        patterns: Optional[List[Tuple[str, str]]] = None,
        message: str = ASSESSMENT_BLOCK_MESSAGE,
    ) -> None:
        self._message = message
        self._rules: List[Tuple[str, Pattern[str]]] = [
            (rule_id, re.compile(pattern, re.IGNORECASE))
            for rule_id, pattern in (patterns if patterns is not None else BLOCK_PATTERNS)
        ]

    def evaluate(self, question: str) -> PolicyDecision:
        """Evaluate a question.

        Args:
            question: Raw question text

        Returns:
            PolicyDecision; allowed=False carries the first matching rule
        """
        for rule_id, pattern in self._rules:
            if pattern.search(question):
                logger.info("Question blocked by content policy", extra={"rule_id": rule_id})
                return PolicyDecision(allowed=False, reason=self._message, rule_id=rule_id)
        return ALLOW


_gate: Optional[ContentPolicyGate] = None


def get_content_policy_gate() -> ContentPolicyGate:
    """Get the shared content policy gate."""
    global _gate
    if _gate is None:
        _gate = ContentPolicyGate()
    return _gate
