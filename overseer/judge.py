"""Rule judge: decides whether a piece of text violates a check instruction."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .config import settings
from .errors import JudgeError

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

_CHECK_RULE_PROMPT = """You are a supervisor checking whether a reasoning fragment violates one rule.

Rule: {check}
{context_line}
Answer in JSON only:
{{"violated": true/false, "explanation": "short explanation when violated"}}

If the rule was NOT violated, answer: {{"violated": false}}"""


@dataclass(frozen=True)
class JudgeVerdict:
    violated: bool
    explanation: str | None = None


class RuleJudge(Protocol):
    """Contract of the external rule judge.

    Must be safe to call repeatedly and concurrently. Failures raise
    ``JudgeError``.
    """

    async def check_rule(
        self, text: str, check: str, context_json: str | None = None
    ) -> JudgeVerdict: ...


def parse_verdict(raw: str) -> JudgeVerdict:
    """Parse a judge reply, tolerating prose around the JSON object."""
    match = _JSON_OBJECT_RE.search(raw or "")
    if not match:
        raise JudgeError(f"Judge reply has no JSON object: {raw[:80]!r}")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise JudgeError(f"Judge reply is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("violated"), bool):
        raise JudgeError("Judge reply is missing a boolean 'violated' field")
    explanation = data.get("explanation")
    return JudgeVerdict(
        violated=data["violated"],
        explanation=str(explanation) if explanation else None,
    )


class AnthropicJudge:
    """Async rule judge backed by the Anthropic Messages API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        max_tokens: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.judge_api_key
        self._model = model or settings.judge_model
        self._max_tokens = max_tokens or settings.judge_max_tokens
        timeout = timeout_seconds if timeout_seconds is not None else settings.judge_timeout
        self._client = client or httpx.AsyncClient(
            base_url=(base_url or settings.judge_api_url).rstrip("/"),
            timeout=httpx.Timeout(timeout),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, system_prompt: str, user_message: str) -> str:
        body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_message}],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        try:
            resp = await self._client.post("/v1/messages", json=body, headers=headers)
            resp.raise_for_status()
        except httpx.RequestError as e:
            raise JudgeError(f"Judge request failed: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise JudgeError(f"Judge API error {status}: {e.response.text[:200]}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise JudgeError("Judge API returned a non-JSON body") from e
        return _extract_text(data.get("content") or [])

    async def check_rule(
        self, text: str, check: str, context_json: str | None = None
    ) -> JudgeVerdict:
        context_line = f"Additional context: {context_json}\n" if context_json else ""
        system_prompt = _CHECK_RULE_PROMPT.format(check=check, context_line=context_line)
        raw = await self._request(system_prompt, text)
        return parse_verdict(raw)


def _extract_text(parts: list[dict[str, Any]]) -> str:
    texts: list[str] = []
    for part in parts:
        if part.get("type") == "text" and isinstance(part.get("text"), str):
            texts.append(part["text"])
    return "".join(texts).strip()
