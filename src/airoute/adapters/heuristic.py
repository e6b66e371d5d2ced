"""
Heuristic provider for airoute.

Answers basic greetings/farewells and does keyword sentiment classification
without any external service. Always available, so it serves as the
terminal sentinel of default composites.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from airoute.providers.base import Provider
from airoute.providers.models import (
    Classification,
    GenerateResponse,
    ResponseStream,
    StreamChunk,
    TokenUsage,
    iter_chunks,
)

MODEL = "fallback-heuristic"

GREETING_PATTERNS = ("hello", "hi", "hey", "greetings", "howdy")
FAREWELL_PATTERNS = ("bye", "goodbye", "farewell", "later", "ciao")
POSITIVE_PATTERNS = ("good", "great", "excellent", "amazing", "wonderful", "love", "like", "happy")
NEGATIVE_PATTERNS = ("bad", "terrible", "awful", "hate", "dislike", "sad", "angry")

POSITIVE_LABELS = ("positive", "good", "happy")
NEGATIVE_LABELS = ("negative", "bad", "sad")

DEFAULT_TEMPLATES = {
    "greeting": "Hello! How can I help you today?",
    "farewell": "Goodbye! Have a great day!",
}
DEFAULT_RESPONSE = (
    "I'm a simple fallback adapter. I can only respond to basic greetings and farewells. "
    "For advanced AI capabilities, please configure a real AI provider."
)

_WORD = re.compile(r"[a-z']+")


def _words(text: str) -> set[str]:
    return set(_WORD.findall(text.lower()))


def count_tokens(text: str) -> int:
    """Very rough token count: whitespace-separated words."""
    return len(text.split())


class HeuristicProvider(Provider):
    """Template and keyword based provider with no external dependencies."""

    default_id = "fallback"

    def __init__(
        self,
        provider_id: str | None = None,
        templates: Mapping[str, str] | None = None,
        default_response: str | None = None,
    ):
        """
        Initialize the heuristic provider.

        Args:
            provider_id: Provider identity (default ``fallback``).
            templates: Overrides for the ``greeting``/``farewell`` replies.
            default_response: Reply for anything not recognized.
        """
        super().__init__(provider_id)
        self.templates = {**DEFAULT_TEMPLATES, **(templates or {})}
        self.default_response = default_response or DEFAULT_RESPONSE

    def reply_for(self, prompt: str) -> str:
        words = _words(prompt)
        if words.intersection(GREETING_PATTERNS):
            return self.templates["greeting"]
        if words.intersection(FAREWELL_PATTERNS):
            return self.templates["farewell"]
        return self.default_response

    async def generate(self, prompt: str, options: Mapping[str, Any]) -> GenerateResponse:
        content = self.reply_for(prompt)
        return GenerateResponse(
            content=content,
            model=MODEL,
            provider=self.provider_id,
            usage=TokenUsage(input_tokens=count_tokens(prompt), output_tokens=count_tokens(content)),
            finish_reason="stop",
            metadata={"adapter": "fallback", "heuristic": True},
        )

    async def stream(self, prompt: str, options: Mapping[str, Any]) -> ResponseStream:
        """Stream the generated reply as a single chunk."""
        response = await self.generate(prompt, options)
        chunk = StreamChunk(content=response.content, finish_reason="stop", model=MODEL)
        return ResponseStream(iter_chunks([chunk]))

    async def classify(
        self, text: str, labels: Sequence[str], options: Mapping[str, Any]
    ) -> Classification:
        """
        Keyword sentiment classification.

        Picks a positive-ish or negative-ish label with confidence 0.6 when
        the text leans that way and such a label exists; otherwise the first
        label with confidence 0.5. Scores over all labels sum to 1.0.
        """
        labels = list(labels)
        words = _words(text)
        positive = len(words.intersection(POSITIVE_PATTERNS))
        negative = len(words.intersection(NEGATIVE_PATTERNS))

        label = _find_label(labels, POSITIVE_LABELS) if positive > negative else None
        if label is None and negative > positive:
            label = _find_label(labels, NEGATIVE_LABELS)

        if label is None:
            label, confidence = (labels[0] if labels else "unknown"), 0.5
        else:
            confidence = 0.6

        return Classification(
            label=label,
            confidence=confidence,
            scores=_scores(labels, label, confidence),
            metadata={"adapter": "fallback", "heuristic": True},
        )


def _find_label(labels: Sequence[str], candidates: Sequence[str]) -> str | None:
    for candidate in candidates:
        for label in labels:
            if candidate in label.lower():
                return label
    return None


def _scores(labels: Sequence[str], selected: str, confidence: float) -> dict[str, float]:
    others = (1.0 - confidence) / (len(labels) - 1) if len(labels) > 1 else 0.0
    scores = {
        label: round(confidence if label == selected else others, 3) for label in labels
    }
    # rounding drift goes to the selected label
    adjustment = 1.0 - sum(scores.values())
    if selected in scores and abs(adjustment) > 0.001:
        scores[selected] = round(scores[selected] + adjustment, 3)
    return scores
