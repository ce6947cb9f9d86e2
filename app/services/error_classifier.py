"""
Heuristic classification of remote auth errors.

The remote service only gives us free text, so outcomes are picked by
case-insensitive substring match against an ordered rule table.  The
first matching rule wins; anything unmatched is NETWORK_OR_UNKNOWN and
keeps the raw message for display.  The tables are plain data so they
can be swapped per deployment and tested on their own.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.models import OutcomeKind


@dataclass(frozen=True)
class MatchRule:
    """Maps any of *needles* (lower-case substrings) to *kind*."""
    kind: OutcomeKind
    needles: tuple[str, ...]


# Order matters: "Token has expired or is invalid" must be EXPIRED_CODE.
VERIFY_RULES: tuple[MatchRule, ...] = (
    MatchRule(OutcomeKind.EXPIRED_CODE, ("expired",)),
    MatchRule(OutcomeKind.INVALID_CODE, ("invalid", "token")),
    MatchRule(OutcomeKind.RATE_LIMITED, ("rate limit",)),
)

RESEND_RULES: tuple[MatchRule, ...] = (
    MatchRule(OutcomeKind.RATE_LIMITED, ("rate limit", "too many requests")),
    MatchRule(OutcomeKind.USER_NOT_FOUND, ("user not found",)),
)

# Used by the registration entry flow
REGISTRATION_RULES: tuple[MatchRule, ...] = (
    MatchRule(OutcomeKind.RATE_LIMITED, ("rate limit", "too many requests")),
)


class ErrorClassifier:
    def __init__(self, rules: tuple[MatchRule, ...]) -> None:
        self._rules = rules

    def classify(self, message: str | None) -> OutcomeKind:
        text = (message or "").lower()
        for rule in self._rules:
            if any(needle in text for needle in rule.needles):
                return rule.kind
        return OutcomeKind.NETWORK_OR_UNKNOWN


verify_classifier = ErrorClassifier(VERIFY_RULES)
resend_classifier = ErrorClassifier(RESEND_RULES)
registration_classifier = ErrorClassifier(REGISTRATION_RULES)
