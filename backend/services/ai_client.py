"""
Thin wrapper around the Anthropic Messages API shared by structuring,
field validation and currency lookup.  Each service is handed its own
AIClient at construction; a client built without a key reports
``configured = False`` and raises AIUnavailable on use.
"""
import logging
import re
from typing import Optional

import anthropic

from services.errors import AIUnavailable

logger = logging.getLogger("smartreceipts.ai")


def strip_fences(raw: str) -> str:
    raw = raw.strip()
    raw = re.sub(r'^```[a-z]*\n?', '', raw)
    raw = re.sub(r'\n?```$', '', raw)
    return raw.strip()


class AIClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = api_key or ""
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def complete(self, prompt: str, system: Optional[str] = None, max_tokens: int = 1024) -> str:
        """Send a single user turn and return the reply text with fences removed."""
        if not self.configured:
            raise AIUnavailable("AI API key not configured")

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            message = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.warning("Claude API error (%s): %s", type(e).__name__, e)
            raise AIUnavailable(f"Claude API error: {e}") from e

        if not message.content:
            raise AIUnavailable("Claude returned an empty response")
        return strip_fences(message.content[0].text)
