from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
import time
from typing import Any, Callable

from fastapi import HTTPException, status
import httpx

from ledgersight.core.config import get_settings
from ledgersight.models.enums import AiProvider
from ledgersight.services.ai_keys import ApiCredentials
from ledgersight.services.ai_usage import TokenUsage


logger = logging.getLogger("ledgersight.ai.narrative")

RETRYABLE_STATUS = {429, 503}
FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class NarrativeClient:
    provider: AiProvider
    api_key: str
    model: str
    base_url: str
    temperature: float
    max_output_tokens: int
    timeout_seconds: float
    max_retries: int
    backoff_seconds: float


@dataclass(frozen=True)
class Completion:
    content: str
    usage: TokenUsage


CompletionFn = Callable[[NarrativeClient, list[dict[str, str]]], Completion]


def initialize_client(credentials: ApiCredentials) -> NarrativeClient:
    if not credentials.api_key:
        raise HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail="API key is required.")
    settings = get_settings()
    base_url = settings.openai_base_url if credentials.provider == AiProvider.openai else settings.gemini_base_url
    return NarrativeClient(
        provider=credentials.provider,
        api_key=credentials.api_key,
        model=credentials.model,
        base_url=base_url.rstrip("/"),
        temperature=settings.narrative_temperature,
        max_output_tokens=settings.narrative_max_output_tokens,
        timeout_seconds=settings.narrative_timeout_seconds,
        max_retries=settings.narrative_max_retries,
        backoff_seconds=settings.narrative_backoff_seconds,
    )


def _extract_gemini_text(payload: dict[str, Any]) -> str | None:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    chunks: list[str] = []
    for part in parts:
        if isinstance(part, dict):
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                chunks.append(text.strip())
    if not chunks:
        return None
    return "\n".join(chunks).strip()


def _gemini_usage(payload: dict[str, Any]) -> TokenUsage:
    meta = payload.get("usageMetadata")
    if not isinstance(meta, dict):
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=int(meta.get("promptTokenCount") or 0),
        completion_tokens=int(meta.get("candidatesTokenCount") or 0),
        total_tokens=int(meta.get("totalTokenCount") or 0),
    )


def _gemini_request(client: NarrativeClient, messages: list[dict[str, str]]) -> tuple[str, dict, dict]:
    system_text = "\n\n".join(row["content"] for row in messages if row["role"] == "system")
    contents = [
        {
            "role": "user" if row["role"] == "user" else "model",
            "parts": [{"text": row["content"]}],
        }
        for row in messages
        if row["role"] != "system"
    ]
    payload: dict[str, Any] = {
        "contents": contents,
        "generationConfig": {
            "temperature": client.temperature,
            "maxOutputTokens": client.max_output_tokens,
        },
    }
    if system_text:
        payload["systemInstruction"] = {"parts": [{"text": system_text}]}
    url = f"{client.base_url}/models/{client.model}:generateContent"
    return url, {"key": client.api_key}, payload


def _openai_request(client: NarrativeClient, messages: list[dict[str, str]]) -> tuple[str, dict, dict]:
    payload = {
        "model": client.model,
        "messages": [{"role": row["role"], "content": row["content"]} for row in messages],
        "temperature": client.temperature,
        "max_tokens": client.max_output_tokens,
    }
    return f"{client.base_url}/chat/completions", {}, payload


def _parse_openai(payload: dict[str, Any]) -> tuple[str | None, TokenUsage]:
    choices = payload.get("choices")
    text = None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            text = message["content"].strip()
    usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
    return text, TokenUsage(
        prompt_tokens=int(usage.get("prompt_tokens") or 0),
        completion_tokens=int(usage.get("completion_tokens") or 0),
        total_tokens=int(usage.get("total_tokens") or 0),
    )


def _raise_for_provider_error(client: NarrativeClient, response: httpx.Response) -> None:
    code = response.status_code
    logger.error("%s request failed with status %s", client.provider.value, code)
    if code in {401, 403}:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{client.provider.value} API key was rejected.",
        )
    if code == 429:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"{client.provider.value} rate limit exceeded. Retry in a few seconds.",
        )
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"{client.provider.value} request failed with status {code}.",
    )


def complete(
    client: NarrativeClient,
    messages: list[dict[str, str]],
    *,
    transport: httpx.BaseTransport | None = None,
) -> Completion:
    """Send a chat exchange to the configured provider and return raw text plus token usage.

    Rate limits and overloads are retried with exponential backoff up to
    ``client.max_retries`` times; anything else is mapped to an HTTP error.
    """
    if client.provider == AiProvider.openai:
        url, params, payload = _openai_request(client, messages)
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {client.api_key}"}
    else:
        url, params, payload = _gemini_request(client, messages)
        headers = {"Content-Type": "application/json"}

    attempt = 0
    with httpx.Client(timeout=client.timeout_seconds, transport=transport) as http:
        while True:
            try:
                response = http.post(url, params=params, headers=headers, json=payload)
            except httpx.HTTPError as exc:
                logger.error("%s request could not be sent: %s", client.provider.value, exc)
                raise HTTPException(
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    detail=f"Could not reach {client.provider.value}.",
                ) from exc
            if response.status_code in RETRYABLE_STATUS and attempt < client.max_retries:
                delay = client.backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    "%s returned %s (attempt %s/%s). Retrying in %.1fs.",
                    client.provider.value,
                    response.status_code,
                    attempt,
                    client.max_retries,
                    delay,
                )
                time.sleep(delay)
                continue
            if response.status_code >= 400:
                _raise_for_provider_error(client, response)
            break

    try:
        body = response.json()
    except ValueError as exc:
        logger.error("%s returned a body that is not JSON: %s", client.provider.value, response.text[:200])
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{client.provider.value} returned an unreadable response.",
        ) from exc
    if not isinstance(body, dict):
        logger.error("%s returned a JSON %s instead of an object.", client.provider.value, type(body).__name__)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{client.provider.value} returned an unreadable response.",
        )
    if client.provider == AiProvider.openai:
        text, usage = _parse_openai(body)
    else:
        text, usage = _extract_gemini_text(body), _gemini_usage(body)
    logger.debug("%s completion tokens=%s", client.provider.value, usage.total_tokens)
    return Completion(content=text or "", usage=usage)


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Return the first JSON object found in ``text``, ignoring markdown fences around it."""
    if not text:
        return None
    cleaned = FENCE_PATTERN.sub("", text).strip()
    decoder = json.JSONDecoder()
    index = cleaned.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, index)
        except json.JSONDecodeError:
            index = cleaned.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = cleaned.find("{", index + 1)
    return None
