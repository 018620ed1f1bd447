# app/tools/llm.py
from __future__ import annotations
import asyncio, json, logging, re, time
from typing import Any, NamedTuple, Optional

import aiohttp
import requests

from app.config import Settings
from app.errors import ConfigurationError, LLMNotReady, ModelOutputError
from app.tools.http import HttpClient

log = logging.getLogger("llm")

# Strip reasoning-model <think> blocks just in case
_THINK_BLOCK = re.compile(r"<\s*think\s*>.*?<\s*/\s*think\s*>", re.I | re.S)
_FENCE_OPEN = re.compile(r"^\s*```(?:json)?\s*", re.I)
_FENCE_CLOSE = re.compile(r"\s*```\s*$")

def _clean(t: str) -> str:
    return _THINK_BLOCK.sub("", t or "").strip()


def ollama_reachable(base_url: str, timeout: float = 2) -> bool:
    """Blocking GET of the Ollama tag list; run it off the event loop."""
    try:
        resp = requests.get(f"{base_url.rstrip('/')}/api/tags", timeout=timeout)
    except requests.RequestException:
        return False
    return resp.status_code == 200


class LLMClient(HttpClient):
    """
    Prompt completion against a configurable backend:
      • ollama – native /api/chat
      • openai – any OpenAI-compatible /v1/chat/completions server (vLLM pods, ...)
    The caller owns JSON extraction; see parse_json_reply.
    """

    def __init__(self, backend: str, base_url: str, model: str, api_key: str | None = None,
                 timeout: int = 600):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        super().__init__(base_url, timeout, headers=headers)
        self.backend = backend
        self.model = model

    @classmethod
    def from_settings(cls, s: Settings) -> "LLMClient":
        if s.llm_backend == "ollama":
            return cls("ollama", s.ollama_base, s.ollama_model, timeout=s.llm_timeout)
        if s.llm_backend == "openai":
            if not s.llm_base_url or not s.llm_model:
                raise ConfigurationError("LLM_BASE_URL and LLM_MODEL are required when LLM_BACKEND=openai")
            return cls("openai", s.llm_base_url, s.llm_model, api_key=s.llm_api_key, timeout=s.llm_timeout)
        raise ConfigurationError(f"unknown LLM_BACKEND {s.llm_backend!r}")

    def _payload(self, system: str, user: str, temperature: float, max_tokens: int) -> tuple[str, dict]:
        messages = [{"role": "system", "content": system}, {"role": "user", "content": user}]
        if self.backend == "ollama":
            return "/api/chat", {
                "model": self.model, "stream": False, "messages": messages,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            }
        return "/v1/chat/completions", {
            "model": self.model, "messages": messages,
            "temperature": temperature, "max_tokens": max_tokens,
        }

    @staticmethod
    def _extract(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        if data.get("error"):
            err = data["error"]
            raise LLMNotReady(err if isinstance(err, str) else (err.get("message") or json.dumps(err)))
        msg = (data.get("message") or {}).get("content")
        if msg is None:
            msg = data.get("response")
        if msg is None:
            choices = data.get("choices") or [{}]
            msg = (choices[0].get("message") or {}).get("content")
        return msg or ""

    async def complete(self, system: str, user: str, temperature: float = 0.5, max_tokens: int = 100) -> str:
        await self.connect()
        path, payload = self._payload(system.strip(), user.strip(), temperature, max_tokens)
        t0 = time.time()
        try:
            async with self.session.post(self.url(path), json=payload) as r:
                if r.status >= 400:
                    raise LLMNotReady(f"HTTP {r.status}: {(await r.text())[:300]}")
                data = await r.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LLMNotReady(f"{self.backend} backend unreachable: {e}") from e
        text = _clean(self._extract(data))
        if not text:
            raise LLMNotReady("Empty response from LLM.")
        log.info("LLM %s chars=%d latency=%.2fs", self.backend, len(text), time.time() - t0)
        return text

    async def health(self) -> bool:
        try:
            return bool(await self.complete("Réponds uniquement: ok", "ping", 0.0, 5))
        except LLMNotReady as e:
            log.warning("LLM not ready: %s", e)
            return False


# ---------- JSON replies ----------

class JsonReply(NamedTuple):
    data: Any
    repaired: bool

_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}

def escape_control_chars(raw: str) -> str:
    """
    One pass over the text: control characters found inside string literals are
    re-escaped. Existing escape sequences are copied untouched and quotes keep
    delimiting strings, so valid parts of the document do not change.
    """
    out = []
    in_string = False
    escaped = False
    for ch in raw:
        if in_string:
            if escaped:
                out.append(ch)
                escaped = False
            elif ch == "\\":
                out.append(ch)
                escaped = True
            elif ch == '"':
                out.append(ch)
                in_string = False
            elif ord(ch) < 0x20 or ch == "\x7f":
                out.append(_ESCAPES.get(ch, f"\\u{ord(ch):04x}"))
            else:
                out.append(ch)
        else:
            if ch == '"':
                in_string = True
            out.append(ch)
    return "".join(out)

def _strip_wrapping(text: str) -> str:
    t = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", _clean(text)))
    start, end = t.find("{"), t.rfind("}")
    if start != -1 and end > start:
        t = t[start:end + 1]
    return t.strip()

def parse_json_reply(text: str, context: Optional[str] = None) -> JsonReply:
    """Strict parse first, then exactly one control-character repair attempt."""
    body = _strip_wrapping(text)
    try:
        return JsonReply(json.loads(body), False)
    except json.JSONDecodeError as first:
        repaired = escape_control_chars(body)
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise ModelOutputError(f"unparsable JSON reply ({e.msg} at {e.pos}); first error: {first.msg}") from e
        log.warning("json repair applied%s (%s at %d)", f" for {context}" if context else "", first.msg, first.pos)
        return JsonReply(data, True)
