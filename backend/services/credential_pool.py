"""Gemini API key pool.

Keys are gathered from three environment sources and merged:
- GEMINI_API_KEY: single key, or a comma-separated list (legacy)
- GEMINI_API_KEYS: comma-separated list
- GEMINI_API_KEY_1 .. GEMINI_API_KEY_20: numbered slots
"""
import os
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

MIN_KEY_LENGTH = 10
MAX_INDEXED_KEYS = 20


@dataclass(frozen=True)
class Credential:
    """A provider API key. Equality and hashing use the normalized value only."""
    value: str
    raw: str = field(default="", compare=False, repr=False)

    @property
    def suffix(self) -> str:
        """Trailing 4 characters, the only part of a key that may be logged."""
        return self.value[-4:]

    def __repr__(self):
        return f"Credential(...{self.suffix})"


def normalize_key(raw: Optional[str]) -> Optional[str]:
    """Trim, strip one layer of matching quotes, reject short values."""
    if not raw:
        return None
    trimmed = raw.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ("'", '"'):
        trimmed = trimmed[1:-1]
    if len(trimmed) < MIN_KEY_LENGTH:
        return None
    return trimmed


class CredentialPool:
    """Reads provider keys from configuration. Holds no state between loads."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    def _raw_values(self, env: Mapping[str, str]) -> List[str]:
        values: List[str] = []

        single = env.get("GEMINI_API_KEY")
        if single:
            values.extend(single.split(",") if "," in single else [single])

        multi = env.get("GEMINI_API_KEYS")
        if multi:
            values.extend(multi.split(","))

        for i in range(1, MAX_INDEXED_KEYS + 1):
            slot = env.get(f"GEMINI_API_KEY_{i}")
            if slot:
                values.append(slot)

        return values

    def load(self) -> List[Credential]:
        env = self._environ if self._environ is not None else os.environ
        seen = set()
        credentials: List[Credential] = []
        for raw in self._raw_values(env):
            value = normalize_key(raw)
            if value is None:
                continue
            credential = Credential(value=value, raw=raw)
            if credential in seen:
                continue
            seen.add(credential)
            credentials.append(credential)
        logger.debug(f"Loaded {len(credentials)} Gemini API key(s)")
        return credentials
