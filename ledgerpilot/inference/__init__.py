"""
LedgerPilot — Inference

  InferenceInvoker            — runs one call at the selected tier under its timeout
  AnthropicInferenceService   — default InferenceService over AsyncAnthropic
  OfflineInferenceService     — used when no API key is configured; always fails
                                with a transport error so callers take the
                                fallback path

No retries at this layer: a failed call becomes an InferenceError and the
Decision Parser decides what to do with it.
"""
import asyncio
import time as _time

import anthropic
from loguru import logger

from ledgerpilot.models import TierSelection
from ledgerpilot.services import InferenceError


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```lang ... ``` wrapper, if any."""
    text = text.strip()
    if text.startswith("```"):
        first_nl = text.index("\n") if "\n" in text else len(text)
        text = text[first_nl + 1:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


class InferenceInvoker:
    def __init__(self, service):
        self.service = service

    async def invoke(self, selection: TierSelection, instruction: str) -> str:
        """Returns raw model text or raises InferenceError."""
        if self.service is None:
            raise InferenceError("transport", "no inference service configured")

        logger.info(f"[Inference] Calling {selection.model_id} ({selection.label}, "
                    f"max_tokens={selection.max_tokens}, timeout={selection.timeout_s}s)")
        t0 = _time.time()
        try:
            raw = await asyncio.wait_for(
                self.service.invoke(selection.model_id, instruction, selection.max_tokens),
                selection.timeout_s)
        except asyncio.TimeoutError:
            raise InferenceError("timeout", f"{selection.model_id} exceeded {selection.timeout_s}s") from None
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError("transport", f"{type(e).__name__}: {e}") from e

        if not isinstance(raw, str) or not raw.strip():
            raise InferenceError("malformed", "empty or non-text model output")

        elapsed = round((_time.time() - t0) * 1000)
        logger.info(f"[Inference] OK in {elapsed}ms ({len(raw)} chars)")
        return raw


# ============================================================
# DEFAULT SERVICES
# ============================================================
class AnthropicInferenceService:
    """InferenceService backed by the Anthropic Messages API."""

    def __init__(self, client=None):
        self.client = client or anthropic.AsyncAnthropic()

    async def invoke(self, model_id: str, instruction: str, max_tokens: int) -> str:
        try:
            msg = await self.client.messages.create(
                model=model_id, max_tokens=max_tokens,
                messages=[{"role": "user", "content": instruction}])
        except anthropic.APITimeoutError as e:
            raise InferenceError("timeout", str(e)) from e
        except (anthropic.APIConnectionError, anthropic.APIStatusError) as e:
            raise InferenceError("transport", f"{type(e).__name__}: {e}") from e

        texts = [b.text for b in (msg.content or []) if getattr(b, "type", None) == "text"]
        if not texts:
            raise InferenceError("malformed", "response carried no text content")
        return strip_code_fences("".join(texts))


class OfflineInferenceService:
    async def invoke(self, model_id: str, instruction: str, max_tokens: int) -> str:
        raise InferenceError("transport", "ANTHROPIC_API_KEY not configured")
