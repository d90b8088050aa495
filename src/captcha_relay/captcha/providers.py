"""Recognition provider adapters.

Each adapter wraps one external backend behind ``IRecognitionProvider``:

- OpenRouterProvider: one chat-completions round trip to a vision model
- NoPeCHAProvider: submit a recognition job, then poll for its result

Adapters enforce their own timeout by cancelling the in-flight call and
translate every transport or content problem into a ``ProviderError`` so the
failover policy can classify it.
"""

import asyncio
import re
from abc import abstractmethod
from typing import Any, Dict, FrozenSet, Optional

import aiohttp

from captcha_relay.config.mcp_logger import logger
from captcha_relay.errors import ErrorKind, MissingCredentialError, ProviderError
from captcha_relay.interfaces import ICredentialStore, IRecognitionProvider

from .credentials import NOPECHA_API_KEY, OPENROUTER_API_KEY
from .failover import DEFAULT_TRIGGER_CODES

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


def clean_captcha_text(
    raw_text: str,
    min_length: int = 3,
    max_length: int = 8,
    provider: Optional[str] = None
) -> str:
    """Reduce free-form model output to a captcha token.
    
    Whitespace and every non-alphanumeric character are dropped; the result
    must fall within ``[min_length, max_length]``.
    
    Raises:
        ProviderError: ``MALFORMED_RESPONSE`` if no valid token remains.
    """
    text = (raw_text or "").strip()
    cleaned = _NON_ALPHANUMERIC.sub("", text)
    if min_length <= len(cleaned) <= max_length:
        return cleaned
    raise ProviderError(
        f'Failed to extract valid CAPTCHA from: "{text[:50]}"',
        kind=ErrorKind.MALFORMED_RESPONSE,
        provider=provider
    )


def classify_http_status(status: int, trigger_codes: FrozenSet[int] = DEFAULT_TRIGGER_CODES) -> ErrorKind:
    """Map an HTTP error status to an error kind."""
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in trigger_codes or status >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.REJECTED


class BaseRecognitionProvider(IRecognitionProvider):
    """Shared plumbing for HTTP-based providers.
    
    Subclasses implement ``_recognize``. The public ``recognize`` bounds it
    with ``timeout`` and normalizes transport errors. The aiohttp session is
    created lazily unless one is injected.
    """
    
    def __init__(
        self,
        name: str,
        credentials: ICredentialStore,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 35.0,
        min_length: int = 3,
        max_length: int = 8,
        trigger_codes: FrozenSet[int] = DEFAULT_TRIGGER_CODES
    ):
        self.name = name
        self.credentials = credentials
        self.session = session
        self.timeout = timeout
        self.min_length = min_length
        self.max_length = max_length
        self.trigger_codes = trigger_codes
        self._owns_session = session is None
        self.logger = logger.bind(provider=name)
    
    async def recognize(self, image) -> str:
        try:
            return await asyncio.wait_for(self._recognize(image), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Timeout after {self.timeout}s",
                kind=ErrorKind.TIMEOUT,
                status_code=408,
                provider=self.name
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderError(
                f"Request failed: {e}",
                kind=ErrorKind.TRANSIENT,
                provider=self.name
            ) from e
        except ProviderError as e:
            if e.provider is None:
                e.provider = self.name
            raise
    
    @abstractmethod
    async def _recognize(self, image) -> str:
        pass
    
    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session
    
    async def close(self) -> None:
        """Close the aiohttp session if this provider created it."""
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None
    
    async def __aenter__(self):
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
    
    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)
    
    async def _raise_for_status(self, response, context: str = "API") -> None:
        if response.status < 400:
            return
        body = await response.text()
        raise ProviderError(
            f"{context} error {response.status}: {body[:200]}",
            kind=classify_http_status(response.status, self.trigger_codes),
            status_code=response.status,
            provider=self.name
        )
    
    async def _read_json(self, response) -> Dict[str, Any]:
        try:
            body = await response.json(content_type=None)
        except ValueError as e:
            raise ProviderError(
                f"Invalid JSON from provider: {e}",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.name
            ) from e
        if not isinstance(body, dict):
            raise ProviderError(
                "Unexpected response shape",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.name
            )
        return body
    
    def clean(self, raw_text: str) -> str:
        return clean_captcha_text(raw_text, self.min_length, self.max_length, provider=self.name)
    
    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class OpenRouterProvider(BaseRecognitionProvider):
    """Vision model reached through OpenRouter's chat-completions API.
    
    One request per recognition; the model's free-form reply is cleaned down
    to an alphanumeric token.
    """
    
    ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
    PROMPT = "Read the CAPTCHA text. Reply with ONLY the exact characters."
    
    def __init__(
        self,
        model: str,
        credentials: ICredentialStore,
        endpoint: str = ENDPOINT,
        **kwargs
    ):
        super().__init__(model, credentials, **kwargs)
        self.model = model
        self.endpoint = endpoint
    
    def _build_payload(self, image) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image.data_url}},
                    {"type": "text", "text": self.PROMPT}
                ]
            }],
            "temperature": 0.1,
            "max_tokens": 50
        }
    
    async def _recognize(self, image) -> str:
        api_key = self.credentials.get(OPENROUTER_API_KEY)
        if not api_key:
            raise MissingCredentialError(OPENROUTER_API_KEY, provider=self.name)
        
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": "CAPTCHA Auto-Solver"
        }
        session = await self._get_session()
        
        self.logger.debug("openrouter_request", fingerprint=image.fingerprint[:12])
        async with session.post(
            self.endpoint,
            json=self._build_payload(image),
            headers=headers,
            timeout=self._client_timeout()
        ) as response:
            await self._raise_for_status(response)
            body = await self._read_json(response)
        
        content = self._extract_content(body)
        if not content:
            raise ProviderError(
                "Empty response from API",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.name
            )
        return self.clean(content)
    
    @staticmethod
    def _extract_content(body: Dict[str, Any]) -> str:
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        if isinstance(content, list):
            # Some models answer with content parts instead of a plain string
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        return content if isinstance(content, str) else ""


class NoPeCHAProvider(BaseRecognitionProvider):
    """NoPeCHA text-captcha recognition (submit, then poll).
    
    The API key is optional by default: without one the request is sent
    anonymously. Set ``require_key`` to treat a missing key as a
    configuration error.
    
    Besides 202, a 409 from the retrieve endpoint is also read as "job still
    processing" and keeps the poll loop going.
    """
    
    ENDPOINT = "https://api.nopecha.com/v1/recognition/textcaptcha"
    PROCESSING_STATUS_CODES = frozenset({202, 409})
    
    def __init__(
        self,
        credentials: ICredentialStore,
        endpoint: str = ENDPOINT,
        poll_interval: float = 0.5,
        max_poll_attempts: int = 20,
        require_key: bool = False,
        name: str = "NoPeCHA",
        **kwargs
    ):
        super().__init__(name, credentials, **kwargs)
        self.endpoint = endpoint
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.require_key = require_key
    
    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = self.credentials.get(NOPECHA_API_KEY)
        if api_key:
            headers["Authorization"] = f"Basic {api_key}"
        elif self.require_key:
            raise MissingCredentialError(NOPECHA_API_KEY, provider=self.name)
        return headers
    
    async def _recognize(self, image) -> str:
        headers = self._headers()
        job_id = await self._submit(image, headers)
        return await self._poll(job_id, headers)
    
    async def _submit(self, image, headers: Dict[str, str]) -> str:
        session = await self._get_session()
        self.logger.info("nopecha_submitting", fingerprint=image.fingerprint[:12])
        async with session.post(
            self.endpoint,
            json={"image_data": [image.data_url]},
            headers=headers,
            timeout=self._client_timeout()
        ) as response:
            await self._raise_for_status(response, context="NoPeCHA submit")
            body = await self._read_json(response)
        
        job_id = body.get("data")
        if not job_id or not isinstance(job_id, str):
            raise ProviderError(
                "NoPeCHA: No job ID returned",
                kind=ErrorKind.MALFORMED_RESPONSE,
                provider=self.name
            )
        return job_id
    
    async def _poll(self, job_id: str, headers: Dict[str, str]) -> str:
        session = await self._get_session()
        self.logger.info("nopecha_polling", job_id=job_id, max_attempts=self.max_poll_attempts)
        
        for attempt in range(1, self.max_poll_attempts + 1):
            await asyncio.sleep(self.poll_interval)
            
            async with session.get(
                self.endpoint,
                params={"id": job_id},
                headers=headers,
                timeout=self._client_timeout()
            ) as response:
                if response.status in self.PROCESSING_STATUS_CODES:
                    self.logger.debug("nopecha_still_processing", attempt=attempt)
                    continue
                await self._raise_for_status(response, context="NoPeCHA retrieve")
                body = await self._read_json(response)
            
            data = body.get("data")
            if isinstance(data, list) and data and isinstance(data[0], str) and data[0]:
                return self.clean(data[0])
            
            if body.get("error"):
                raise ProviderError(
                    f"NoPeCHA: {body['error']}",
                    kind=ErrorKind.MALFORMED_RESPONSE,
                    provider=self.name
                )
        
        raise ProviderError(
            "NoPeCHA: Timeout waiting for result",
            kind=ErrorKind.TIMEOUT,
            status_code=408,
            provider=self.name
        )
