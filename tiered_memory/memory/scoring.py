"""
Turn scoring for memory promotion.

Decides whether a user/bot exchange is worth keeping beyond the Recent
Buffer and how important it is. The default scorer is a keyword and
length heuristic; anything implementing TurnScorer can replace it.
"""

from abc import ABC, abstractmethod
from typing import Sequence

PROMOTION_KEYWORDS = (
    "remember", "important", "project", "deadline", "meeting",
    "password", "login", "configuration", "settings", "preference",
)
HIGH_IMPORTANCE_KEYWORDS = ("important", "urgent", "critical", "remember")
MEDIUM_IMPORTANCE_KEYWORDS = ("project", "task", "deadline", "meeting")


class TurnScorer(ABC):
    """Scores one conversational exchange."""

    @abstractmethod
    def should_promote(self, user_message: str, bot_response: str) -> bool:
        """True if the exchange belongs in long-term memory."""

    @abstractmethod
    def importance(self, user_message: str, bot_response: str) -> float:
        """Importance in [0, 1]."""


class KeywordTurnScorer(TurnScorer):
    """
    Keyword/length heuristic.

    Promotion is a disjunction: any promotion keyword, a long message or
    response, or a question answered at some length. Importance starts at
    ``base`` and adds a fixed bonus per keyword hit and per long side,
    saturating at 1.0.
    """

    def __init__(
        self,
        promotion_keywords: Sequence[str] = PROMOTION_KEYWORDS,
        high_keywords: Sequence[str] = HIGH_IMPORTANCE_KEYWORDS,
        medium_keywords: Sequence[str] = MEDIUM_IMPORTANCE_KEYWORDS,
        base: float = 0.5,
        high_bonus: float = 0.2,
        medium_bonus: float = 0.1,
        length_bonus: float = 0.1,
        long_message_chars: int = 100,
        long_response_chars: int = 200,
        answered_question_chars: int = 50,
        important_message_chars: int = 200,
        important_response_chars: int = 500
    ):
        self.promotion_keywords = tuple(k.lower() for k in promotion_keywords)
        self.high_keywords = tuple(k.lower() for k in high_keywords)
        self.medium_keywords = tuple(k.lower() for k in medium_keywords)
        self.base = base
        self.high_bonus = high_bonus
        self.medium_bonus = medium_bonus
        self.length_bonus = length_bonus
        self.long_message_chars = long_message_chars
        self.long_response_chars = long_response_chars
        self.answered_question_chars = answered_question_chars
        self.important_message_chars = important_message_chars
        self.important_response_chars = important_response_chars

    @staticmethod
    def _text(user_message: str, bot_response: str) -> str:
        return f"{user_message} {bot_response}".lower()

    def should_promote(self, user_message: str, bot_response: str) -> bool:
        text = self._text(user_message, bot_response)

        if any(keyword in text for keyword in self.promotion_keywords):
            return True

        if len(user_message) > self.long_message_chars or len(bot_response) > self.long_response_chars:
            return True

        return "?" in user_message and len(bot_response) > self.answered_question_chars

    def importance(self, user_message: str, bot_response: str) -> float:
        text = self._text(user_message, bot_response)
        score = self.base

        score += self.high_bonus * sum(1 for k in self.high_keywords if k in text)
        score += self.medium_bonus * sum(1 for k in self.medium_keywords if k in text)

        if len(bot_response) > self.important_response_chars:
            score += self.length_bonus
        if len(user_message) > self.important_message_chars:
            score += self.length_bonus

        return min(score, 1.0)
