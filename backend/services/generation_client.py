"""Gemini text generation with per-call key failover.

Each call takes a fresh random permutation of the configured keys and tries
them one at a time until one succeeds. Nothing is remembered between calls:
no cooldowns, no circuit breaking, no concurrent fan-out.
"""
import os
import random
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from services.credential_pool import Credential, CredentialPool
from services.errors import AllCredentialsExhausted, NoCredentialsAvailable, RateLimited

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")

RATE_LIMIT_STATUS = 429

ProviderCall = Callable[[Credential, str, str], Awaitable[str]]


@dataclass
class AttemptResult:
    """Outcome of one provider call with one key."""
    key_suffix: str
    ok: bool
    text: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def rate_limited(self) -> bool:
        return self.status_code == RATE_LIMIT_STATUS


async def call_gemini(credential: Credential, prompt: str, model: str) -> str:
    """Single generate_content call against Gemini using one key."""
    import google.generativeai as genai

    # configure() swaps module-level client state; the async client is bound
    # to the model before the first await, so concurrent calls keep their key.
    genai.configure(api_key=credential.value)
    gemini = genai.GenerativeModel(model)
    response = await gemini.generate_content_async(prompt)
    if not response or not response.text:
        raise ValueError("Empty response from LLM")
    return response.text


def status_code_of(exc: Exception) -> Optional[int]:
    """Best-effort HTTP status for a provider exception."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return int(code)
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    if "429" in str(exc):
        return RATE_LIMIT_STATUS
    return None


class GenerationClient:
    """Generates text with the first working key from a shuffled pool."""

    def __init__(
        self,
        pool: Optional[CredentialPool] = None,
        call: Optional[ProviderCall] = None,
        rng: Optional[random.Random] = None,
    ):
        self.pool = pool or CredentialPool()
        self._call = call or call_gemini
        self._rng = rng or random.Random()

    def permutation(self, credentials: Sequence[Credential]) -> List[Credential]:
        """Random ordering of a snapshot of the pool."""
        return self._rng.sample(list(credentials), len(credentials))

    async def _attempt(self, credential: Credential, prompt: str, model: str) -> AttemptResult:
        logger.info(f"Trying Gemini key ...{credential.suffix}")
        try:
            text = await self._call(credential, prompt, model)
        except Exception as e:
            logger.warning(f"Gemini key ...{credential.suffix} failed: {e}")
            return AttemptResult(
                key_suffix=credential.suffix,
                ok=False,
                error=str(e),
                status_code=status_code_of(e),
            )
        return AttemptResult(key_suffix=credential.suffix, ok=True, text=text)

    async def generate(self, prompt: str, model: str = DEFAULT_MODEL) -> str:
        """Return generated text, or raise once every key has failed.

        Raises:
            NoCredentialsAvailable: no valid key configured (no call is made)
            RateLimited: all keys failed and the last one was rate limited
            AllCredentialsExhausted: all keys failed
        """
        credentials = self.pool.load()
        if not credentials:
            raise NoCredentialsAvailable()

        attempts: List[AttemptResult] = []
        for credential in self.permutation(credentials):
            result = await self._attempt(credential, prompt, model)
            attempts.append(result)
            if result.ok:
                return result.text

        last = attempts[-1]
        logger.error(f"All {len(attempts)} Gemini keys failed. Last error: {last.error}")
        error_cls = RateLimited if last.rate_limited else AllCredentialsExhausted
        raise error_cls(len(attempts), last.error, last.status_code)
