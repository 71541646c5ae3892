"""Unified LLM client with OpenAI -> vLLM fallback."""

import asyncio
from typing import List, Dict, Optional
import time

import openai

from desci.core.config import settings
from desci.utils.logger import log_llm_call, logger

NO_RESPONSE_TEXT = "No response available from the language model."


def _strip_reasoning_tags(text: str) -> str:
    """Remove reasoning blocks like <think>...</think> from model output.

    Some providers (including vLLM-served models) may return hidden reasoning
    sections wrapped in <think>...</think>. Those are stripped so the user only
    sees the final answer.
    """
    if not text:
        return text

    start = text.find("<think>")
    if start == -1:
        return text

    end = text.find("</think>", start)
    if end != -1:
        cleaned = text[end + len("</think>") :]
        return cleaned.strip() or cleaned

    # Unclosed tag: keep only what precedes it
    return text[:start].strip()


def _truncate_prompt(prompt: str, max_tokens: int = 400) -> str:
    """Truncate prompt to fit within token budget (rough estimate: 1 token ≈ 4 chars)."""
    max_chars = max_tokens * 4
    if len(prompt) <= max_chars:
        return prompt

    keep_each = max_chars // 2
    return f"{prompt[:keep_each]}\n\n[... content truncated ...]\n\n{prompt[-keep_each:]}"


def _openai_key_configured() -> bool:
    key = settings.OPENAI_API_KEY
    return bool(key and key.strip() and not key.startswith("#"))


def llm_available() -> bool:
    return _openai_key_configured() or settings.USE_VLLM_FALLBACK


def _call_vllm(messages: List[Dict[str, str]], max_tokens: int = 250, temperature: float = 0.0) -> Optional[str]:
    """Call vLLM-compatible endpoint (OpenAI API format)."""
    if not settings.USE_VLLM_FALLBACK:
        return None

    start_time = time.time()
    try:
        vllm_client = openai.OpenAI(api_key="EMPTY", base_url=settings.VLLM_BASE_URL)

        truncated_messages = []
        for msg in messages:
            truncated_msg = msg.copy()
            if msg["role"] == "user":
                truncated_msg["content"] = _truncate_prompt(msg["content"], max_tokens=700)
            truncated_messages.append(truncated_msg)

        safe_max_tokens = min(max_tokens, 200)
        prompt_text = " ".join([m["content"] for m in truncated_messages])
        estimated_prompt_tokens = len(prompt_text) // 4

        resp = vllm_client.chat.completions.create(
            model=settings.VLLM_MODEL,
            messages=truncated_messages,
            max_tokens=safe_max_tokens,
            temperature=temperature,
        )

        latency_ms = (time.time() - start_time) * 1000
        result = _strip_reasoning_tags(resp.choices[0].message.content.strip())

        log_llm_call(
            provider="vLLM",
            model=settings.VLLM_MODEL,
            prompt_tokens=estimated_prompt_tokens,
            completion_tokens=len(result) // 4,
            success=True,
            latency_ms=latency_ms
        )
        return result
    except Exception as e:
        latency_ms = (time.time() - start_time) * 1000
        logger.error(f"vLLM fallback failed: {e}")
        log_llm_call(
            provider="vLLM",
            model=settings.VLLM_MODEL,
            prompt_tokens=0,
            completion_tokens=0,
            success=False,
            error=str(e),
            latency_ms=latency_ms
        )
        return None


def call_llm(
    messages: List[Dict[str, str]],
    max_tokens: int = 500,
    temperature: float = 0.2,
    model: Optional[str] = None,
    fallback: str = NO_RESPONSE_TEXT,
) -> str:
    """
    Call LLM with fallback logic:
    1. Try OpenAI if API key present
    2. Fall back to vLLM if configured
    3. Return ``fallback`` (never the prompt) as last resort
    """
    model = model or settings.OPENAI_MODEL

    if _openai_key_configured():
        start_time = time.time()
        try:
            client = openai.OpenAI(api_key=settings.OPENAI_API_KEY)
            resp = client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )

            latency_ms = (time.time() - start_time) * 1000
            result = _strip_reasoning_tags(resp.choices[0].message.content.strip())

            log_llm_call(
                provider="OpenAI",
                model=model,
                prompt_tokens=resp.usage.prompt_tokens,
                completion_tokens=resp.usage.completion_tokens,
                success=True,
                latency_ms=latency_ms
            )
            if result:
                return result
        except Exception as e:
            latency_ms = (time.time() - start_time) * 1000
            logger.warning(f"OpenAI call failed: {e}, trying vLLM fallback...")
            log_llm_call(
                provider="OpenAI",
                model=model,
                prompt_tokens=0,
                completion_tokens=0,
                success=False,
                error=str(e),
                latency_ms=latency_ms
            )

    vllm_result = _call_vllm(messages, max_tokens, temperature)
    if vllm_result:
        return vllm_result

    if llm_available():
        logger.error("All LLM providers failed, returning fallback text")
    return fallback


async def call_llm_async(*args, **kwargs) -> str:
    return await asyncio.to_thread(call_llm, *args, **kwargs)
