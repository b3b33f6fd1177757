from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import AsyncIterator, Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from app.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMStreamRequest:
    purpose: str
    system_prompt: str
    messages: List[Dict[str, str]] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: Optional[int] = None


class LLMProvider(Protocol):
    name: str
    model: str

    def stream(self, req: LLMStreamRequest) -> AsyncIterator[str]:
        ...


class TextGenerator(Protocol):
    def stream(self, req: LLMStreamRequest) -> AsyncIterator[str]:
        ...


class TextGenerationError(RuntimeError):
    pass


class OpenAICompatProvider:
    def __init__(
        self,
        *,
        name: str,
        api_key: Optional[str],
        base_url: Optional[str],
        model: str,
    ) -> None:
        self.name = name
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    async def stream(self, req: LLMStreamRequest) -> AsyncIterator[str]:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": req.system_prompt}, *req.messages],
            temperature=req.temperature,
            max_tokens=req.max_tokens,
            stream=True,
        )
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta


class LLMGateway:
    """Streams from the first provider on the route that starts producing text.

    A provider that fails before its first chunk is skipped for the next one. Once text
    has been sent downstream a failure is final.
    """

    def __init__(
        self,
        *,
        providers: Dict[str, LLMProvider],
        default_route: List[str],
        purpose_routes: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self.providers = providers
        self.default_route = default_route
        self.purpose_routes = purpose_routes or {}

    async def stream(self, req: LLMStreamRequest, *, route: Optional[List[str]] = None) -> AsyncIterator[str]:
        if route is None:
            route = self.purpose_routes.get(req.purpose, self.default_route)
        attempts = 0
        last_err: Optional[Exception] = None

        for idx, provider_name in enumerate(route):
            attempts += 1
            provider = self.providers.get(provider_name)
            if provider is None:
                last_err = ValueError(f"Unknown provider: {provider_name}")
                continue

            t0 = time.perf_counter()
            chunks = 0
            chars = 0
            try:
                async for piece in provider.stream(req):
                    chunks += 1
                    chars += len(piece)
                    yield piece
            except Exception as exc:
                if chunks:
                    raise TextGenerationError(
                        f"stream interrupted provider={provider_name}: {exc}"
                    ) from exc
                logger.warning(
                    "LLM provider failed before first token purpose=%s provider=%s: %s",
                    req.purpose,
                    provider_name,
                    exc,
                )
                last_err = exc
                continue

            logger.info(
                "LLM stream done purpose=%s provider=%s model=%s sys_chars=%s messages=%s chunks=%s out_chars=%s ms=%s attempts=%s fallback=%s",
                req.purpose,
                provider.name,
                provider.model,
                len(req.system_prompt),
                len(req.messages),
                chunks,
                chars,
                int((time.perf_counter() - t0) * 1000),
                attempts,
                idx > 0,
            )
            return

        raise TextGenerationError(str(last_err) if last_err else "No LLM provider configured")


@lru_cache
def get_llm_gateway() -> LLMGateway:
    settings = get_settings()
    providers: Dict[str, LLMProvider] = {
        "primary": OpenAICompatProvider(
            name="primary",
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.llm_primary_model,
        ),
    }
    default_route = ["primary"]

    if settings.llm_fallback_model:
        providers["fallback"] = OpenAICompatProvider(
            name="fallback",
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.llm_fallback_model,
        )
        default_route.append("fallback")

    return LLMGateway(providers=providers, default_route=default_route)
