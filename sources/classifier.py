"""
Classifier Client
Ollama-compatible LLM adapter for sentiment, embeddings and relevance
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from config import get_classifier_settings
from config.settings import ClassifierSettings
from core import ClassificationResult, RelevanceScore
from utils.exceptions import ClassifierError

from .base import ClassifierClient


logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

ANALYSIS_PROMPT = """You are a social media analyst. Analyze the following post and provide a structured JSON response.

POST DETAILS:
- User: {author}
- Description: {text}
- Hashtags: {hashtags}
- Engagement: {likes} likes, {comments} comments

ANALYSIS REQUIRED:
1. Sentiment Score: Rate from 1 (very negative) to 10 (very positive)
2. Sentiment Label: "negative" (1-3), "neutral" (4-7) or "positive" (8-10)
3. Key Topics: 3-5 main topics from the post (lowercase, short phrases)
4. Brand Mentioned: true if any brand/product is mentioned, false otherwise
5. Summary: one sentence summary (max 100 chars)
6. Language: language code of the post (e.g. "en", "es")

Response must be ONLY valid JSON in this exact format:
{{"sentiment_score": <1-10>, "sentiment_label": "<negative|neutral|positive>", "key_topics": ["topic"], "brand_mentioned": <true|false>, "summary": "<text>", "language": "<code>"}}"""

RELEVANCE_PROMPT = """You are a content relevance checker. Determine if the following post is relevant to the search query.

SEARCH QUERY: "{query}"

POST CONTENT:
{text}

Rate the relevance from 0 (completely unrelated) to 1 (perfectly relevant).

Respond ONLY with valid JSON:
{{"relevance_score": <0.0-1.0>, "is_relevant": <true|false>, "reason": "<brief explanation>"}}"""


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of a model response (tolerates code fences and chatter)."""
    cleaned = str(text or "").replace("```json", "").replace("```", "").strip()
    match = _JSON_OBJECT_RE.search(cleaned)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def fallback_analysis(response: str) -> ClassificationResult:
    """Keyword heuristic used when the model answers without parseable JSON."""
    lower = str(response or "").lower()
    score = 5
    if any(word in lower for word in ("positive", "happy", "love")):
        score = 7
    elif any(word in lower for word in ("negative", "sad", "angry")):
        score = 3
    return ClassificationResult(sentiment_score=score, summary=str(response or "")[:100])


class OllamaClassifierClient(ClassifierClient):
    def __init__(
        self,
        *,
        settings: Optional[ClassifierSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_classifier_settings()
        self._client = client
        self.model_name = self._settings.model_name
        self.endpoint = self._settings.endpoint.rstrip("/")

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.endpoint}{path}"
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=self._settings.request_timeout)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self._settings.request_timeout)) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ClassifierError(f"classifier call failed: {exc}", model=self.model_name, path=path) from exc

    async def generate(self, prompt: str) -> str:
        data = await self._post(
            "/api/generate",
            {
                "model": self.model_name,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": self._settings.temperature, "num_predict": self._settings.max_tokens},
            },
        )
        return str(data.get("response") or "")

    async def classify(self, post: Dict[str, Any]) -> ClassificationResult:
        engagement = post.get("engagement") or {}
        prompt = ANALYSIS_PROMPT.format(
            author=post.get("author") or "unknown",
            text=str(post.get("text") or "No description")[:2000],
            hashtags=", ".join(post.get("hashtags") or []) or "None",
            likes=engagement.get("likes", 0),
            comments=engagement.get("comments", 0),
        )
        response = await self.generate(prompt)
        parsed = extract_json_object(response)
        if parsed is None:
            logger.warning("classifier_unparseable model=%s", self.model_name)
            return fallback_analysis(response)
        topics = parsed.get("key_topics") or parsed.get("topics") or []
        return ClassificationResult(
            sentiment_score=parsed.get("sentiment_score"),
            topics=[str(item).strip().lower() for item in topics if str(item).strip()][:5],
            brand_mentioned=bool(parsed.get("brand_mentioned", False)),
            summary=str(parsed.get("summary") or "")[:200],
            language=str(parsed.get("language") or "en"),
        )

    async def embed(self, text: str) -> List[float]:
        data = await self._post("/api/embeddings", {"model": self._settings.embedding_model, "prompt": str(text or "")})
        vector = data.get("embedding")
        if not isinstance(vector, list) or not vector:
            raise ClassifierError("empty embedding returned", model=self._settings.embedding_model)
        return [float(item) for item in vector]

    async def score_relevance(self, text: str, query: str) -> RelevanceScore:
        response = await self.generate(RELEVANCE_PROMPT.format(query=query, text=str(text or "")[:1000]))
        parsed = extract_json_object(response)
        if parsed is None:
            raise ClassifierError("unparseable relevance response", model=self.model_name)
        score = RelevanceScore(
            score=parsed.get("relevance_score", 0.0),
            is_relevant=bool(parsed.get("is_relevant", False)),
            reason=str(parsed.get("reason") or ""),
        )
        return score
