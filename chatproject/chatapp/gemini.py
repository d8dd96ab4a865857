# chatapp/gemini.py
import asyncio
import logging
import random
from typing import Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from voiceapp.errors import ModelError

from .constants import DEFAULT_LANGUAGE, Persona, language_instruction
from .media import Attachment
from .messages import ChatMessage

logger = logging.getLogger(__name__)

# Reduce logging noise
logging.getLogger("google.genai").setLevel(logging.WARNING)

MODEL = "gemini-2.0-flash-exp"
HISTORY_TURNS = 10


def build_prompt_context(
    persona: Persona,
    history: Sequence[ChatMessage],
    user_text: str,
    limit: int = HISTORY_TURNS,
    language: str = DEFAULT_LANGUAGE,
) -> str:
    """
    Persona instruction in the response language plus the language rule, then
    the last ``limit`` turns as ``User:``/``Assistant:`` lines, then the new
    user line and an open ``Assistant:`` slot.
    """
    settled = [m for m in history if not m.pending]
    recent = settled[-limit:] if limit > 0 else []
    lines = [f"{'User' if m.is_user else 'Assistant'}: {m.content}" for m in recent]
    lines.append(f"User: {user_text}")
    lines.append("Assistant:")
    header = persona.prompt_for(language).strip() + "\n\n" + language_instruction(language)
    return header + "\n\n" + "\n".join(lines)


def _is_rate_limited(e: Exception) -> bool:
    code = getattr(e, "code", None) or getattr(e, "status_code", None)
    return code == 429 or "RESOURCE_EXHAUSTED" in str(e).upper()


class GeminiModelClient:
    def __init__(
        self,
        client: Optional[genai.Client] = None,
        *,
        api_key: Optional[str] = None,
        model: str = MODEL,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        self.client = client or genai.Client(api_key=api_key)
        self.model_name = model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def generate(self, prompt_context: str) -> str:
        return await self._generate(prompt_context)

    async def generate_from_context_and_media(self, prompt_context: str, media: Attachment) -> str:
        part = types.Part.from_bytes(data=media.data, mime_type=media.mime_type)
        return await self._generate([prompt_context, part])

    async def _gen_backoff(self, contents):
        """Calls the Gemini API with exponential backoff for rate limit errors."""
        for i in range(self.max_retries):
            try:
                return await self.client.aio.models.generate_content(model=self.model_name, contents=contents)
            except genai_errors.ClientError as e:
                if _is_rate_limited(e) and i < self.max_retries - 1:
                    t = min(self.max_delay, self.base_delay * (2 ** i)) + random.random()
                    logger.warning("Rate limited. Retrying in %.1fs...", t)
                    await asyncio.sleep(t)
                    continue
                raise
        raise ModelError("Exhausted retries due to rate limiting.")

    async def _generate(self, contents) -> str:
        try:
            response = await self._gen_backoff(contents)
        except ModelError:
            raise
        except genai_errors.APIError as e:
            logger.error("Gemini Error: %s", e)
            raise ModelError(f"Gemini request failed: {e}") from e
        except Exception as e:
            logger.error("Error generating AI response: %s", e)
            raise ModelError(str(e)) from e

        text = getattr(response, "text", None)
        if not text:
            raise ModelError("Gemini returned an empty response")
        return text.strip()
