"""
Oracle client: one bounded, rate-limit-aware consultation per call.

The client sends a rendered prompt through a transport and returns the raw
text of the answer. Parsing and validation happen later, in the owning
agent's tick.

Failure modes are typed:
- ``OracleTimeout``: no answer within ``timeout_seconds``
- ``OracleRateLimited``: rate limited and no untried credential to rotate to
- ``OracleTransportError``: anything else, including a rotated retry that
  was rate limited again

Rate-limit retry uses tenacity: the first rate-limited attempt rotates the
shared ``CredentialPool`` (compare-and-swap) when an untried credential
exists, and the request is retried once against the current credential.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from mirascope import llm
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from .cognition.renderers import RenderedPrompt
from .config import Config
from .credentials import CredentialPool
from .errors import OracleError, OracleRateLimited, OracleTimeout, OracleTransportError
from .local_llm import LocalLLMError, call_ollama_chat
from .logging_utils import env_flag, log_info, log_oracle


RATE_LIMIT_STATUS = 429
MAX_ATTEMPTS = 2


class OracleTransport(Protocol):
    """One raw request/response exchange with a model provider."""

    async def complete(self, prompt: RenderedPrompt, credential: Optional[str]) -> str:
        ...


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class MirascopeTransport:
    """Remote providers through ``mirascope.llm.call``.

    For ``openai`` and ``anthropic`` a provider SDK client is built per
    credential so rotation takes effect immediately; other providers read
    their credentials from the environment.
    """

    def __init__(self, provider: str, model: str, *, base_url: Optional[str] = None) -> None:
        self.provider = provider
        self.model = model
        self.base_url = base_url
        self._clients: Dict[Optional[str], Any] = {}

    def _client(self, credential: Optional[str]) -> Any:
        if credential in self._clients:
            return self._clients[credential]

        client: Any = None
        if self.provider == "openai":
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=credential or "not-needed", base_url=self.base_url)
        elif self.provider == "anthropic" and credential:
            from anthropic import AsyncAnthropic

            client = AsyncAnthropic(api_key=credential)

        self._clients[credential] = client
        return client

    async def complete(self, prompt: RenderedPrompt, credential: Optional[str]) -> str:
        client = self._client(credential)

        @llm.call(provider=self.provider, model=self.model, client=client, json_mode=True)
        async def _invoke(text: str) -> str:
            return text

        try:
            response = await _invoke(prompt.text)
        except Exception as exc:
            if _status_code(exc) == RATE_LIMIT_STATUS:
                raise OracleRateLimited(str(exc), credential=credential) from exc
            raise OracleTransportError(f"{self.provider} call failed: {exc}") from exc
        return response.content


class OllamaTransport:
    """Local models served by Ollama.

    A busy server (queue full) is reported as a rate limit, like a 429 from a
    hosted provider.
    """

    def __init__(
        self,
        model: str,
        *,
        base_url: Optional[str] = None,
        request_timeout: float = 120.0,
        options: Optional[Dict[str, Any]] = None,
        keep_alive: Optional[str] = None,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.request_timeout = request_timeout
        self.options = options
        self.keep_alive = keep_alive

    async def complete(self, prompt: RenderedPrompt, credential: Optional[str]) -> str:
        try:
            return await call_ollama_chat(
                system_prompt=prompt.system,
                user_prompt=prompt.user,
                llm_model=self.model,
                base_url=self.base_url,
                timeout=self.request_timeout,
                options=self.options,
                keep_alive=self.keep_alive,
            )
        except LocalLLMError as exc:
            if exc.busy:
                raise OracleRateLimited(str(exc), credential=credential) from exc
            raise OracleTransportError(f"Local oracle error: {exc}") from exc


class OracleClient:
    """Bounded, credential-rotating oracle consultations."""

    def __init__(
        self,
        transport: OracleTransport,
        *,
        credentials: Optional[CredentialPool] = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self.transport = transport
        self.credentials = credentials or CredentialPool()
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, credentials: Optional[CredentialPool] = None) -> "OracleClient":
        """Build a client from ``Config`` (provider, model, keys, timeout)."""

        provider = Config.ORACLE_PROVIDER.lower()
        if provider == "ollama":
            transport: OracleTransport = OllamaTransport(Config.ORACLE_MODEL, base_url=Config.ORACLE_BASE_URL)
        else:
            transport = MirascopeTransport(provider, Config.ORACLE_MODEL, base_url=Config.ORACLE_BASE_URL)
        return cls(
            transport,
            credentials=credentials or CredentialPool.from_config(),
            timeout_seconds=Config.ORACLE_TIMEOUT_SECONDS,
        )

    async def consult(self, prompt: RenderedPrompt) -> str:
        """Send ``prompt`` and return the oracle's raw text."""

        tried: List[Optional[str]] = []

        def _can_rotate(exc: BaseException) -> bool:
            return isinstance(exc, OracleRateLimited) and self.credentials.has_alternate(tried)

        if env_flag("DEBUG_ORACLE"):
            log_info(f"Oracle prompt:\n{prompt.text}")

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_can_rotate),
                stop=stop_after_attempt(MAX_ATTEMPTS),
                reraise=True,
            ):
                with attempt:
                    credential = self.credentials.current()
                    tried.append(credential)
                    try:
                        raw = await self._call_once(prompt, credential)
                    except OracleRateLimited:
                        if self.credentials.has_alternate(tried):
                            self.credentials.rotate(credential)
                            log_oracle("Rate limited; switching to alternate credential and retrying")
                        raise
                    if env_flag("DEBUG_ORACLE"):
                        log_info(f"Oracle raw response: {raw}")
                    return raw
        except OracleRateLimited as exc:
            if len(tried) > 1:
                raise OracleTransportError(
                    f"still rate limited after switching credentials: {exc}"
                ) from exc
            raise

        raise OracleTransportError("oracle retry loop exited unexpectedly")

    async def _call_once(self, prompt: RenderedPrompt, credential: Optional[str]) -> str:
        try:
            return await asyncio.wait_for(
                self.transport.complete(prompt, credential),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise OracleTimeout(self.timeout_seconds) from exc
        except OracleError:
            raise
        except Exception as exc:
            raise OracleTransportError(f"oracle transport failed: {exc}") from exc


__all__ = [
    "MirascopeTransport",
    "OllamaTransport",
    "OracleClient",
    "OracleTransport",
]
