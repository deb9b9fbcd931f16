"""Text-generation clients.

`UnifiedLLMClient.complete` is the single entry point used by the answer
generator. It dispatches to OpenRouter (plain HTTP via httpx) or Gemini
(google-genai SDK) depending on configuration, with optional Gemini fallback.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx
from google import genai
from google.genai import types
from httpx import HTTPStatusError, TimeoutException

from rfp_engine.core.config import settings
from rfp_engine.core.exceptions import APIClientError, APITimeoutError, ConfigurationError
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class BaseLLMClient:
    """HTTP transport with retries, timeout handling and exponential backoff."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = LOGGER

    async def call_api(
        self,
        payload: Dict[str, Any],
        endpoint: str = "",
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload with retry logic.

        Args:
            payload: JSON payload
            endpoint: Path appended to base_url
            headers: Additional headers

        Returns:
            Parsed JSON response

        Raises:
            APIClientError: If the API call fails after retries
            APITimeoutError: If the API call times out after retries
        """
        url = f"{self.base_url}{endpoint}" if endpoint else self.base_url
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        self.logger.debug(f"Calling LLM API: {url}", extra={"timeout": self.timeout})

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(url, headers=request_headers, json=payload)
                    response.raise_for_status()
                    return response.json()
                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, url)
                except TimeoutException as e:
                    await self._handle_timeout_error(e, attempt, url)
                except httpx.HTTPError as e:
                    await self._handle_transport_error(e, attempt, url)

        raise APIClientError(f"Failed to call API {url} after {self.max_retries} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int, url: str):
        status_code = error.response.status_code
        error_body = error.response.text

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "status_code": status_code, "error_body": error_body[:500]},
        )

        # Client errors other than rate limiting are not retried
        if 400 <= status_code < 500 and status_code != 429:
            raise APIClientError(f"API Client Error {status_code}: {error_body}", error) from error

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API HTTP Error {status_code} after retries", error) from error

    async def _handle_timeout_error(self, error: TimeoutException, attempt: int, url: str):
        self.logger.warning(
            f"API Timeout (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url},
        )
        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APITimeoutError(f"API Timeout after {self.max_retries} attempts", error) from error

    async def _handle_transport_error(self, error: httpx.HTTPError, attempt: int, url: str):
        self.logger.warning(
            f"API transport error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "error": str(error)},
        )
        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API Error: {error}", error) from error

    async def _wait_before_retry(self, attempt: int):
        """Exponential backoff wait."""
        await asyncio.sleep(self.retry_delay * (2 ** attempt))


class OpenRouterClient:
    """Chat-completions client for OpenRouter."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
    ):
        self.model = model
        self.transport = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )
        LOGGER.info(f"Initialized OpenRouter client with model {self.model}")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        response = await self.transport.call_api(payload)

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {response}")
            raise APIClientError("Invalid response format from OpenRouter")

        return choices[0].get("message", {}).get("content") or ""


class GeminiClient:
    """Wrapper for the Google Gemini async SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        max_retries: int = 3,
        retry_delay: int = 2,
    ):
        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        try:
            self.client = genai.Client(api_key=api_key)
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", e) from e
        LOGGER.info(f"Initialized Gemini client with model {self.model}")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt,
        )

        for attempt in range(self.max_retries):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=user_prompt,
                    config=config,
                )
                return response.text or ""
            except Exception as e:
                LOGGER.warning(f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    raise APIClientError(f"Gemini generation failed: {e}", e) from e

        raise APIClientError("Gemini generation failed")


class UnifiedLLMClient:
    """Provider-agnostic completion client with optional Gemini fallback."""

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        primary: Union[OpenRouterClient, GeminiClient],
        fallback: Optional[GeminiClient] = None,
    ):
        self.provider = LLMProvider(provider)
        self.client = primary
        self.fallback_client = fallback

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> str:
        """Run one single-shot completion.

        Raises:
            APIClientError: If the provider (and fallback, when configured) fails
        """
        try:
            return await self.client.complete(system_prompt, user_prompt, max_tokens, temperature)
        except APIClientError as e:
            if not self.fallback_client:
                raise
            LOGGER.warning(f"Primary provider ({self.provider.value}) failed, attempting Gemini fallback: {e}")
            return await self.fallback_client.complete(system_prompt, user_prompt, max_tokens, temperature)


def create_llm_client() -> UnifiedLLMClient:
    """Build the completion client from application settings."""
    llm = settings.llm
    try:
        provider = LLMProvider(llm.provider)
    except ValueError as e:
        raise ConfigurationError(f"Unsupported LLM provider: {llm.provider}", e) from e

    if provider == LLMProvider.GEMINI:
        if not llm.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for the gemini provider")
        return UnifiedLLMClient(
            provider,
            GeminiClient(api_key=llm.gemini_api_key, model=llm.gemini_model, max_retries=llm.max_retries),
        )

    if not llm.openrouter_api_key:
        raise ConfigurationError("OPENROUTER_API_KEY is required for the openrouter provider")

    fallback = None
    if llm.enable_fallback:
        if not llm.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required when ENABLE_LLM_FALLBACK is set")
        fallback = GeminiClient(api_key=llm.gemini_api_key, model=llm.gemini_model, max_retries=llm.max_retries)

    return UnifiedLLMClient(
        provider,
        OpenRouterClient(
            api_key=llm.openrouter_api_key,
            model=llm.openrouter_model,
            base_url=llm.openrouter_api_url,
            timeout=llm.timeout_seconds,
            max_retries=llm.max_retries,
        ),
        fallback=fallback,
    )
