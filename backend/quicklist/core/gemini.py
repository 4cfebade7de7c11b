import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from quicklist.core.context import PipelineContext
from quicklist.core.errors import GeminiRateLimitError, GeminiRequestError
from quicklist.core.json_extract import gemini_response_text
from quicklist.core.retry import RETRYABLE_STATUS, RetryableStatus, retry_async
from quicklist.schemas.photo import Photo

logger = logging.getLogger(__name__)

# Service endpoint for Gemini API (v1beta)
API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# A part is either an instruction string or an inline image
Part = Union[str, Photo]


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.4
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 2048

    def to_payload(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topP": self.top_p,
            "topK": self.top_k,
            "maxOutputTokens": self.max_output_tokens,
        }


# Extraction should be reproducible, not creative
EXTRACTION_CONFIG = GenerationConfig(temperature=0.1, top_p=0.8, top_k=20, max_output_tokens=2048)

GOOGLE_SEARCH_TOOL: Dict[str, Any] = {"google_search": {}}


def _redact_key(s: str) -> str:
    """
    Redact 'key=...' in URLs or text so we never leak API keys in logs/responses.
    """
    if not s:
        return s
    # Replace key=XXXXX (until & or whitespace)
    return re.sub(r"(key=)([^&\s]+)", r"\1REDACTED", s)


def _normalize_model(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return ""
    return name if name.startswith("models/") else f"models/{name}"


def build_parts(parts: Sequence[Part]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for p in parts:
        if isinstance(p, Photo):
            if not p.usable:
                continue
            out.append({"inline_data": {"mime_type": p.mime_type, "data": p.b64()}})
        elif p:
            out.append({"text": str(p)})
    return out


def build_payload(
    parts: Sequence[Part],
    generation: GenerationConfig,
    tools: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "contents": [{"role": "user", "parts": build_parts(parts)}],
        "generationConfig": generation.to_payload(),
    }
    if tools:
        payload["tools"] = tools
    return payload


def _retry_after_seconds(resp: httpx.Response) -> Optional[float]:
    raw = resp.headers.get("retry-after")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


async def _post_with_retry(
    ctx: PipelineContext,
    url: str,
    *,
    params: Dict[str, Any],
    json_payload: Dict[str, Any],
) -> httpx.Response:
    """
    POST with retries for 429/503 and transport errors.
    The final 429/503 response is returned, not raised.
    """
    s = ctx.settings
    last: Dict[str, httpx.Response] = {}

    async def attempt() -> httpx.Response:
        resp = await ctx.client.post(url, params=params, json=json_payload, timeout=s.MODEL_TIMEOUT_SECONDS)
        if resp.status_code in RETRYABLE_STATUS:
            last["resp"] = resp
            raise RetryableStatus(resp)
        return resp

    try:
        return await retry_async(
            attempt,
            attempts=s.RETRY_MAX_ATTEMPTS,
            base_delay=s.RETRY_BASE_DELAY_SECONDS,
            max_delay=s.RETRY_MAX_BACKOFF_SECONDS,
        )
    except RetryableStatus:
        return last["resp"]


async def _list_models(ctx: PipelineContext, api_key: str) -> Dict[str, Any]:
    """
    Calls GET /v1beta/models (ListModels).
    """
    url = f"{API_BASE}/models"
    r = await ctx.client.get(url, params={"key": api_key})
    if r.status_code >= 400:
        raise GeminiRequestError(
            f"Gemini ListModels failed: {r.status_code}",
            status_code=r.status_code,
            body=_redact_key(r.text)[:2000],
        )
    return r.json()


def _pick_model_from_list(models_payload: Dict[str, Any]) -> str:
    """
    Picks a model name (e.g. 'models/xxx') that supports generateContent.
    Preference:
      1) Flash models (contains 'flash')
      2) Any model that supports generateContent
    """
    models = models_payload.get("models", []) or []

    def supports_generate(m: Dict[str, Any]) -> bool:
        methods = m.get("supportedGenerationMethods") or []
        return any(str(x).lower() == "generatecontent" for x in methods)

    candidates = [m for m in models if supports_generate(m)]
    if not candidates:
        raise GeminiRequestError("No models found that support generateContent (ListModels returned none)")

    flash = [m for m in candidates if "flash" in (m.get("name", "").lower())]
    chosen = (flash[0] if flash else candidates[0]).get("name")
    if not chosen:
        raise GeminiRequestError("ListModels returned a model entry without a name")
    return chosen  # e.g. "models/gemini-2.5-flash"


async def generate(
    ctx: PipelineContext,
    parts: Sequence[Part],
    generation: GenerationConfig = GenerationConfig(),
    *,
    tools: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """
    Sends instruction/image parts to Gemini and returns the response text.

    - Retries 429/503 with backoff
    - If the configured model 404s, re-resolves once via ListModels
    - Redacts API key from any raised errors
    Raises GeminiRequestError / GeminiRateLimitError; the stages decide what
    a failure means for them.
    """
    api_key = (ctx.settings.GEMINI_API_KEY or "").strip()
    if not api_key:
        raise GeminiRequestError("GEMINI_API_KEY is not set")

    model_name = _normalize_model(ctx.settings.GEMINI_MODEL)
    if not model_name:
        model_name = _pick_model_from_list(await _list_models(ctx, api_key))

    payload = build_payload(parts, generation, tools)
    params = {"key": api_key}

    r = await _post_with_retry(ctx, f"{API_BASE}/{model_name}:generateContent", params=params, json_payload=payload)

    # If the chosen model fails with 404 (retired or misspelled), re-resolve once and try again
    if r.status_code == 404:
        logger.warning("[%s] Gemini model %s not found; resolving via ListModels", ctx.request_id, model_name)
        model_name = _pick_model_from_list(await _list_models(ctx, api_key))
        r = await _post_with_retry(ctx, f"{API_BASE}/{model_name}:generateContent", params=params, json_payload=payload)

    if r.status_code == 429:
        raise GeminiRateLimitError(
            "Gemini rate limit exceeded",
            retry_after_seconds=_retry_after_seconds(r),
            body=_redact_key(r.text)[:2000],
        )

    if r.status_code >= 400:
        raise GeminiRequestError(
            f"Gemini request failed: {r.status_code}",
            status_code=r.status_code,
            body=_redact_key(r.text)[:2000],
        )

    try:
        data = r.json()
    except ValueError:
        raise GeminiRequestError("Gemini returned a non-JSON body", body=_redact_key(r.text)[:2000])

    text = gemini_response_text(data)
    if not text:
        finish = None
        try:
            finish = data["candidates"][0].get("finishReason")
        except (KeyError, IndexError, TypeError, AttributeError):
            pass
        logger.warning("[%s] Gemini returned no text (finishReason=%s)", ctx.request_id, finish)
        logger.debug("Empty Gemini response: %s", json.dumps(data)[:2000])
    return text
