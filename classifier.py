"""
Tone and sentiment classification for review text.

The provider is asked for a single JSON object. Anything that goes wrong
(no API key, transport error, timeout, unusable response) ends in the
rating-based fallback, so ``classify`` never raises.
"""
import json
import logging
import re
from typing import Optional

from anthropic import Anthropic, APIError

from config import settings
from errors import ClassificationError
from schemas import ToneSentiment

logger = logging.getLogger(__name__)

VALID_TONES = ("positive", "negative", "neutral", "mixed")
VALID_SENTIMENTS = (
    "happy", "sad", "angry", "satisfied", "disappointed",
    "excited", "frustrated", "pleased", "neutral",
)
# Scan order for free-text responses; first hit wins, "neutral" only when
# nothing more specific appears
TONE_KEYWORDS = ("positive", "negative", "mixed", "neutral")
SENTIMENT_KEYWORDS = (
    "happy", "sad", "angry", "satisfied", "disappointed",
    "excited", "frustrated", "pleased", "neutral",
)

_JSON_OBJECT = re.compile(r"\{[^{}]+\}")

PROMPT_TEMPLATE = """Analyze the tone and sentiment of this product review: "{text}" with {stars} stars out of 10.

Respond ONLY in this exact JSON format (no markdown, no extra text):
{{"tone": "positive/negative/neutral/mixed", "sentiment": "happy/sad/angry/satisfied/disappointed/excited/frustrated/pleased/neutral"}}

Guidelines:
- Tone: overall attitude (positive, negative, neutral, mixed)
- Sentiment: specific emotion conveyed (happy, satisfied, disappointed, etc.)
- Consider both the text content and the star rating"""


def fallback_analysis(stars: int) -> ToneSentiment:
    if stars >= 8:
        return ToneSentiment(tone="positive", sentiment="satisfied")
    if stars >= 6:
        return ToneSentiment(tone="neutral", sentiment="pleased")
    if stars >= 4:
        return ToneSentiment(tone="neutral", sentiment="neutral")
    return ToneSentiment(tone="negative", sentiment="disappointed")


def normalize_tone(value) -> str:
    normalized = str(value).strip().lower() if value is not None else ""
    return normalized if normalized in VALID_TONES else "neutral"


def normalize_sentiment(value) -> str:
    normalized = str(value).strip().lower() if value is not None else ""
    return normalized if normalized in VALID_SENTIMENTS else "neutral"


def build_prompt(text: str, stars: int) -> str:
    return PROMPT_TEMPLATE.format(text=text, stars=stars)


def parse_response(content: str) -> ToneSentiment:
    """Turn the provider's raw text into normalized labels.

    Tries the first JSON object in the text, then a keyword scan. Raises
    ClassificationError when neither yields anything.
    """
    if not content or not content.strip():
        raise ClassificationError("Empty response from classification provider")

    match = _JSON_OBJECT.search(content)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse classifier JSON: {e}")
        else:
            if isinstance(parsed, dict):
                return ToneSentiment(
                    tone=normalize_tone(parsed.get("tone")),
                    sentiment=normalize_sentiment(parsed.get("sentiment")),
                )

    lowered = content.lower()
    tone = next((word for word in TONE_KEYWORDS if word in lowered), None)
    sentiment = next((word for word in SENTIMENT_KEYWORDS if word in lowered), None)
    if tone is None and sentiment is None:
        raise ClassificationError(f"No tone or sentiment found in response: {content[:80]!r}")
    return ToneSentiment(tone=tone or "neutral", sentiment=sentiment or "neutral")


class ReviewClassifier:
    def __init__(self, client: Optional[Anthropic], model: str, max_tokens: int = 100):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls) -> "ReviewClassifier":
        client = None
        if settings.ANTHROPIC_API_KEY:
            # Retries are the job queue's business; the timeout frees the worker slot
            client = Anthropic(
                api_key=settings.ANTHROPIC_API_KEY,
                timeout=settings.CLASSIFIER_TIMEOUT,
                max_retries=0,
            )
        else:
            logger.warning("ANTHROPIC_API_KEY not configured, using fallback analysis")
        return cls(client, settings.ANTHROPIC_MODEL, settings.CLASSIFIER_MAX_TOKENS)

    def classify(self, text: str, stars: int) -> ToneSentiment:
        if self.client is None:
            return fallback_analysis(stars)

        try:
            result = parse_response(self._complete(build_prompt(text, stars)))
        except APIError as e:
            logger.error(f"Anthropic API error during classification: {str(e)}")
            return fallback_analysis(stars)
        except ClassificationError as e:
            logger.warning(f"Unusable classification response, using fallback: {e.message}")
            return fallback_analysis(stars)

        logger.info(f"Classified review: tone={result.tone}, sentiment={result.sentiment}")
        return result

    def _complete(self, prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0.3,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
