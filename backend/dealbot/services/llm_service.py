"""
Language model provider
───────────────────────
Thin wrapper over AsyncOpenAI chat completions. ``complete`` returns a
ProviderResult carrying the reply text; SDK exceptions are classified and
never escape.

When ``web_search`` is given, the call goes to the search-preview model with
``web_search_options`` so the answer is grounded on live results near the
supplied approximate location.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from dealbot.config.settings import settings
from dealbot.errors import FailureKind, ProviderResult, classify_status
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WebSearch:
    """Approximate user location used to bias grounded search."""
    city: str
    region: str
    country: str


class LLMService:
    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created lazily so the service can be imported without a key
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)
        return self._client

    async def complete(
        self,
        system: str,
        user: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        web_search: Optional[WebSearch] = None,
        history: Optional[List[Dict[str, str]]] = None,
        timeout: Optional[float] = None,
    ) -> ProviderResult:
        if not settings.openai_api_key and self._client is None:
            return ProviderResult.failure(FailureKind.DENIED, "no language model key configured")

        messages = [{"role": "system", "content": system}]
        for entry in history or []:
            if entry.get("role") in ("user", "assistant") and entry.get("content"):
                messages.append({"role": entry["role"], "content": entry["content"]})
        messages.append({"role": "user", "content": user})

        kwargs = {"messages": messages}
        if web_search is not None:
            kwargs["model"] = settings.search_model
            kwargs["web_search_options"] = {
                "user_location": {
                    "type": "approximate",
                    "approximate": {
                        "country": web_search.country,
                        "city": web_search.city,
                        "region": web_search.region,
                    },
                },
            }
        else:
            kwargs["model"] = settings.chat_model
            # search-preview models reject sampling parameters
            if temperature is not None:
                kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        limit = timeout or settings.timeout_default_seconds
        try:
            response = await asyncio.wait_for(self.client.chat.completions.create(**kwargs), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning("complete — %s timed out after %.1fs", kwargs["model"], limit)
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "timeout")
        except openai.RateLimitError:
            logger.warning("complete — %s rate limited (429)", kwargs["model"])
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "HTTP 429")
        except openai.AuthenticationError:
            logger.error("complete — invalid OpenAI API key (401)")
            return ProviderResult.failure(FailureKind.DENIED, "HTTP 401")
        except openai.PermissionDeniedError:
            logger.error("complete — OpenAI access denied for %s (403)", kwargs["model"])
            return ProviderResult.failure(FailureKind.DENIED, "HTTP 403")
        except openai.APIStatusError as e:
            kind = classify_status(e.status_code)
            logger.error("complete — OpenAI returned %s (%s)", e.status_code, kind.value)
            return ProviderResult.failure(kind, f"HTTP {e.status_code}")
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            logger.warning("complete — OpenAI unreachable: %s", e)
            return ProviderResult.failure(FailureKind.UNAVAILABLE, str(e))

        text = ""
        if response.choices:
            text = (response.choices[0].message.content or "").strip()
        if not text:
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "empty completion")
        return ProviderResult.success(text)


llm_service = LLMService()
