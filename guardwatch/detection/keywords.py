"""
Keyword and sender-heuristic detector for messages and calls.

Scores free text against a tiered lexicon and the sender against spam and
contact heuristics, then raises a candidate when the score reaches the
medium threshold.

Scoring (capped at 100):
    +25 per distinct high-risk term
    +15 per distinct medium-risk term
    +5  per distinct low-risk term
    +20 sender matches a spam-number pattern
    +10 sender is not a known contact
    +10 text contains a URL ("http" or "www")
    +8  per distinct urgency term

Example:
    >>> detector = KeywordDetector(KeywordDetectorConfig(lexicon=lexicon))
    >>> score = detector.score_text("let's meet and smoke maconha tonight")
    >>> score.score
    70
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import List, Pattern, Tuple, Union

import structlog

from guardwatch.config.models import KeywordDetectorConfig
from guardwatch.detection.context import DetectionContext
from guardwatch.models.alerts import AlertPriority, AlertType, CandidateAlert, KeywordEvidence
from guardwatch.models.telemetry import CallEvent, MessageEvent

logger = structlog.get_logger(__name__)


HIGH_RISK_POINTS = 25
MEDIUM_RISK_POINTS = 15
LOW_RISK_POINTS = 5
SPAM_SENDER_POINTS = 20
UNKNOWN_CONTACT_POINTS = 10
URL_POINTS = 10
URGENCY_POINTS = 8
MAX_SCORE = 100


def fold_text(text: str) -> str:
    """Lower-case and strip diacritics so "Maconha" and "maconhá" match."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _compile_terms(terms: List[str]) -> List[Tuple[str, Pattern[str]]]:
    return [
        (term, re.compile(r"(?<!\w)" + re.escape(fold_text(term)) + r"(?!\w)"))
        for term in terms
    ]


@dataclass
class KeywordScore:
    """Breakdown of a keyword score."""

    score: int = 0
    high: List[str] = field(default_factory=list)
    medium: List[str] = field(default_factory=list)
    low: List[str] = field(default_factory=list)
    urgency: List[str] = field(default_factory=list)
    spam_sender: bool = False
    unknown_contact: bool = False
    has_url: bool = False


class KeywordDetector:
    """
    Scores messages and calls and raises suspicious-message/call candidates.

    Attributes:
        config: Lexicon, spam patterns, and thresholds.
    """

    name = "keywords"

    def __init__(self, config: KeywordDetectorConfig) -> None:
        self.config = config
        lexicon = config.lexicon
        self._high = _compile_terms(lexicon.high)
        self._medium = _compile_terms(lexicon.medium)
        self._low = _compile_terms(lexicon.low)
        self._urgency = _compile_terms(lexicon.urgency)
        self._spam = [re.compile(p) for p in config.spam_patterns]

    @staticmethod
    def _matches(text: str, terms: List[Tuple[str, Pattern[str]]]) -> List[str]:
        return [term for term, pattern in terms if pattern.search(text)]

    def is_spam_sender(self, phone_number: str) -> bool:
        number = phone_number.strip()
        return any(p.search(number) for p in self._spam)

    def score_text(self, text: str) -> KeywordScore:
        """Score free text against the lexicon and URL rule only."""
        folded = fold_text(text)
        result = KeywordScore(
            high=self._matches(folded, self._high),
            medium=self._matches(folded, self._medium),
            low=self._matches(folded, self._low),
            urgency=self._matches(folded, self._urgency),
            has_url="http" in folded or "www" in folded,
        )
        result.score = min(
            MAX_SCORE,
            len(result.high) * HIGH_RISK_POINTS
            + len(result.medium) * MEDIUM_RISK_POINTS
            + len(result.low) * LOW_RISK_POINTS
            + len(result.urgency) * URGENCY_POINTS
            + (URL_POINTS if result.has_url else 0),
        )
        return result

    def score_event(self, event: Union[MessageEvent, CallEvent]) -> KeywordScore:
        """Score an event's text plus its sender heuristics."""
        text = event.content if isinstance(event, MessageEvent) else ""
        result = self.score_text(text)
        result.spam_sender = self.is_spam_sender(event.phone_number)
        result.unknown_contact = not event.is_known_contact

        score = result.score
        if result.spam_sender:
            score += SPAM_SENDER_POINTS
        if result.unknown_contact:
            score += UNKNOWN_CONTACT_POINTS
        result.score = min(MAX_SCORE, score)
        return result

    def detect(
        self,
        event: Union[MessageEvent, CallEvent],
        context: DetectionContext,
    ) -> List[CandidateAlert]:
        """
        Score a message or call and raise at most one candidate.

        Args:
            event: Message or call to score.
            context: Detection context (unused beyond the interface).

        Returns:
            List[CandidateAlert]: Zero or one candidate.
        """
        result = self.score_event(event)
        if result.score < self.config.medium_threshold:
            return []

        priority = (
            AlertPriority.HIGH
            if result.score >= self.config.high_threshold
            else AlertPriority.MEDIUM
        )
        is_message = isinstance(event, MessageEvent)
        sender = event.contact_name or event.phone_number

        if is_message:
            alert_type = AlertType.SUSPICIOUS_MESSAGE
            title = "Suspicious message"
            description = f"Message from {sender} scored {result.score}/100"
        else:
            alert_type = AlertType.SUSPICIOUS_CALL
            title = "Suspicious caller"
            description = f"Call with {sender} scored {result.score}/100"

        terms = result.high + result.medium + result.low
        if terms:
            description += f" (terms: {', '.join(terms)})"

        logger.debug(
            "keyword_candidate",
            event_id=event.event_id,
            score=result.score,
            priority=priority.value,
        )

        return [
            CandidateAlert(
                alert_type=alert_type,
                priority=priority,
                title=title,
                description=description,
                evidence=KeywordEvidence(
                    source="message" if is_message else "call",
                    phone_number=event.phone_number,
                    score=result.score,
                    high_risk_terms=result.high,
                    medium_risk_terms=result.medium,
                    low_risk_terms=result.low,
                    urgency_terms=result.urgency,
                    spam_sender=result.spam_sender,
                    unknown_contact=result.unknown_contact,
                    has_url=result.has_url,
                ),
                user_id=event.user_id,
                device_id=event.device_id,
                occurred_at=event.occurred_at,
            )
        ]
