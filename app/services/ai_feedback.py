import asyncio
import base64
import json
import logging
import os
from typing import Any, Dict, List, Optional, Protocol

import requests
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.core.config import settings, AISettings
from app.core.exceptions import AIError, AIKillSwitchError
from app.schemas.ai import ChatResponse
from app.services.storage import FileStorage

logger = logging.getLogger(__name__)


class FeedbackClient(Protocol):
    async def feedback(self, document_ref: str, instructions: str) -> Optional[ChatResponse]:
        ...


def build_messages(filename: str, document: bytes, instructions: str) -> List[Dict[str, Any]]:
    """One user turn carrying the PDF as a base64 file part followed by the instructions."""
    encoded = base64.b64encode(document).decode("ascii")
    return [
        {
            "role": "user",
            "content": [
                {
                    "type": "file",
                    "file": {
                        "filename": filename,
                        "file_data": f"data:application/pdf;base64,{encoded}",
                    },
                },
                {"type": "text", "text": instructions},
            ],
        }
    ]


class OpenRouterFeedbackClient:
    """
    AI feedback capability over OpenRouter chat completions.
    Kill-switch, retries and a fallback model, same as every other AI call.
    """

    def __init__(self, storage: FileStorage, ai_settings: Optional[AISettings] = None):
        self.storage = storage
        self.ai = ai_settings or settings.ai

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type((requests.exceptions.RequestException, AIError)),
        reraise=True
    )
    def _do_call(
        messages: List[Dict[str, Any]],
        model_name: str,
        ai: AISettings,
    ) -> Optional[Dict[str, Any]]:
        """Internal method to perform the actual API call with retries."""
        logger.info(f"Calling AI Model: {model_name}")

        try:
            response = requests.post(
                url=ai.base_url,
                headers={
                    "Authorization": f"Bearer {ai.openrouter_api_key}",
                    "Content-Type": "application/json",
                },
                data=json.dumps({
                    "model": model_name,
                    "messages": messages,
                    "temperature": ai.temperature,
                }),
                timeout=ai.timeout_seconds
            )
            response.raise_for_status()
            choices = response.json().get("choices") or []
            return choices[0].get("message") if choices else None

        except requests.exceptions.Timeout:
            logger.error("AI service timeout.")
            raise AIError("AI service reached timeout limit.")
        except requests.exceptions.HTTPError as e:
            logger.error(f"AI service HTTP error: {e}")
            raise AIError(f"AI service returned error: {e.response.status_code}")
        except Exception as e:
            logger.exception("Unexpected error during AI call.")
            raise AIError(f"AI service error: {str(e)}")

    async def feedback(self, document_ref: str, instructions: str) -> Optional[ChatResponse]:
        if self.ai.kill_switch:
            logger.warning("AI Kill-switch is active. Blocking request.")
            raise AIKillSwitchError()

        if not self.ai.openrouter_api_key:
            logger.error("OpenRouter API Key missing.")
            raise AIError("AI service configuration error.")

        document = await self.storage.read(document_ref)
        messages = build_messages(os.path.basename(document_ref), document, instructions)

        try:
            message = await asyncio.to_thread(self._do_call, messages, self.ai.model_name, self.ai)
        except Exception as e:
            logger.warning(f"Primary model {self.ai.model_name} failed: {e}. Attempting fallback.")
            try:
                message = await asyncio.to_thread(self._do_call, messages, self.ai.fallback_model, self.ai)
            except Exception as fe:
                logger.error(f"Fallback model {self.ai.fallback_model} also failed: {fe}")
                raise AIError(f"AI service completely unavailable (Primary: {e}, Fallback: {fe})")

        if message is None:
            logger.warning("AI response carried no choices.")
            return None

        try:
            return ChatResponse.model_validate({"message": message})
        except PydanticValidationError as e:
            logger.error(f"Unexpected AI response shape: {e}")
            raise AIError("Failed to parse AI response.")
