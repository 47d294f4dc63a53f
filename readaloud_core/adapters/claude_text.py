"""
Claude Text Service
===================

Optional AI helper backed by the Anthropic API. Used for two things:

- correcting OCR / extraction noise in a block's text
- classifying blocks the heuristics cannot decide

Requirements:
- pip install anthropic
- ANTHROPIC_API_KEY environment variable

Calls are bounded by a per-request timeout. Transient server errors (5xx,
overloaded) are retried with exponential backoff; anything else propagates so
the service guard can turn it into a soft result.
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import anthropic

from readaloud_core.adapters.base import TextService
from readaloud_core.errors import ClassificationError
from readaloud_core.models import BlockType

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class ClaudeTextConfig:
    """Configuration for the Claude text service."""
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.0  # Exact answers, no creativity
    max_tokens: int = 1024
    timeout: float = 30.0  # Seconds per API call
    max_retries: int = 3  # Retries for transient 5xx errors


# =============================================================================
# PROMPTS
# =============================================================================

CORRECTION_PROMPT = """You are correcting text extracted from a PDF page so it can be read aloud.

Fix broken words, OCR character confusions and stray hyphenation. Do NOT
rephrase, summarise or add anything. Return ONLY the corrected text.

Page: {page_number}
Block type: {block_type}

Text:
{text}"""

CLASSIFY_PROMPT = """Classify this block of text from a book page.

Answer with exactly one label from this list and nothing else:
heading, paragraph, list_item, caption, glossary_term, footnote, sidebar, header, footer

Text:
{text}"""

_LABELS = {t.value for t in BlockType}
_LABEL_PATTERN = re.compile(r"[a-z_]+")


def _is_transient(error: Exception) -> bool:
    """5xx and overloaded responses are worth retrying."""
    if isinstance(error, anthropic.APIStatusError) and error.status_code >= 500:
        return True
    if isinstance(error, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return True
    text = str(error).lower()
    return 'error code: 500' in text or 'internal server error' in text or 'overloaded' in text


def parse_label(answer: str) -> Optional[str]:
    """Pick the first known block type label out of a model answer."""
    for token in _LABEL_PATTERN.findall((answer or "").lower()):
        if token in _LABELS:
            return token
    return None


class ClaudeTextService(TextService):
    """TextService implementation using Claude."""

    def __init__(self,
                 config: Optional[ClaudeTextConfig] = None,
                 client: Optional[Any] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or ClaudeTextConfig()
        self.client = client or anthropic.Anthropic(
            api_key=os.getenv("ANTHROPIC_API_KEY"),
            timeout=self.config.timeout,
        )
        self._sleep = sleep

    @property
    def service_name(self) -> str:
        return "claude"

    def _complete(self, prompt: str) -> str:
        retry_count = 0
        while True:
            try:
                response = self.client.messages.create(
                    model=self.config.model,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    messages=[{"role": "user", "content": prompt}],
                )
                return response.content[0].text
            except Exception as e:
                if not _is_transient(e) or retry_count >= self.config.max_retries:
                    raise
                retry_count += 1
                wait_time = 2 ** retry_count  # Exponential backoff: 2, 4, 8 seconds
                logger.warning(
                    f"Claude transient error, retry {retry_count}/{self.config.max_retries} "
                    f"after {wait_time}s: {e}"
                )
                self._sleep(wait_time)

    def correct_text(self, text: str, context: Dict[str, Any]) -> str:
        prompt = CORRECTION_PROMPT.format(
            page_number=context.get("page_number", "?"),
            block_type=context.get("block_type", "paragraph"),
            text=text,
        )
        corrected = self._complete(prompt).strip()
        return corrected or text

    def classify(self, text: str) -> Optional[str]:
        answer = self._complete(CLASSIFY_PROMPT.format(text=text))
        label = parse_label(answer)
        if label is None:
            raise ClassificationError(f"Unrecognised classifier answer: {answer[:80]!r}")
        return label
