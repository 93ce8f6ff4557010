from __future__ import annotations

import base64
import json
import logging
from decimal import Decimal
from http.client import HTTPException
from typing import Any, Optional, Protocol, Sequence
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import Settings, get_settings

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    'Analyze this document. Extract: "vendor", "amount", '
    '"dueDate" (YYYY-MM-DD, null if not found), "category". '
    "Return as minified JSON."
)

SUMMARY_PROMPT = """Act as a friendly, encouraging financial coach named 'Fin'.
The user's name is {name}. Their monthly budget is {budget}.
Here is a JSON array of their spending over the last 30 days:
{invoices}

Provide a short, conversational summary (2-3 paragraphs): address {name}
directly, compare total spending to the budget, name the top spending category,
give one actionable insight and end on a positive note. Use plain text and
gender-neutral pronouns (they/them)."""

DEALS_PROMPT = (
    "Act as a helpful financial assistant. The user is currently paying {amount} "
    'on {category} for a service from "{vendor}". '
    "Search for better deals for this service."
)


class UpstreamUnavailable(RuntimeError):
    pass


class Extractor(Protocol):
    def extract(self, content: bytes, mime_type: str) -> dict[str, Any]: ...


class Summarizer(Protocol):
    def summarize(
        self,
        invoices: Sequence[dict[str, Any]],
        user_name: Optional[str],
        budget_cents: int,
    ) -> str: ...


class DealFinder(Protocol):
    def find_deals(
        self, vendor: str, amount: Decimal, category: Optional[str]
    ) -> str: ...


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    timeout: float,
    headers: Optional[dict[str, str]] = None,
) -> Any:
    body = json.dumps(payload).encode("utf-8")
    try:
        req = Request(
            url,
            data=body,
            method="POST",
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                **(headers or {}),
            },
        )
        with urlopen(req, timeout=timeout) as resp:
            status = getattr(resp, "status", 200)
            raw = resp.read()
    except (URLError, HTTPException, TimeoutError, OSError, ValueError) as exc:
        raise UpstreamUnavailable(f"Request to {url} failed: {exc}") from exc

    if status < 200 or status >= 300:
        raise UpstreamUnavailable(f"Request to {url} returned status {status}")
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise UpstreamUnavailable(f"Unexpected response from {url}") from exc


class GeminiClient:
    """Document extraction, spending summaries and deal search on top of the
    Generative Language ``generateContent`` REST endpoint."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def _generate(self, payload: dict[str, Any]) -> str:
        if not self.settings.gemini_api_key:
            raise UpstreamUnavailable("Gemini API key is not configured")
        url = (
            f"{self.settings.gemini_endpoint.rstrip('/')}/"
            f"{self.settings.gemini_model}:generateContent"
        )
        result = post_json(
            url,
            payload,
            timeout=self.settings.http_timeout_secs,
            headers={"x-goog-api-key": self.settings.gemini_api_key},
        )
        try:
            return result["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamUnavailable("Unexpected Gemini response shape") from exc

    def extract(self, content: bytes, mime_type: str) -> dict[str, Any]:
        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": EXTRACTION_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(content).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {"response_mime_type": "application/json"},
        }
        text = self._generate(payload)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailable("Extraction response was not JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Extraction response was not an object")
        return data

    def summarize(
        self,
        invoices: Sequence[dict[str, Any]],
        user_name: Optional[str],
        budget_cents: int,
    ) -> str:
        prompt = SUMMARY_PROMPT.format(
            name=user_name or "there",
            budget=f"{budget_cents / 100:.2f}",
            invoices=json.dumps(list(invoices), default=str),
        )
        return self._generate({"contents": [{"parts": [{"text": prompt}]}]})

    def find_deals(
        self, vendor: str, amount: Decimal, category: Optional[str]
    ) -> str:
        prompt = DEALS_PROMPT.format(
            vendor=vendor, amount=f"{amount:.2f}", category=category or "services"
        )
        return self._generate(
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "tools": [{"google_search": {}}],
            }
        )
