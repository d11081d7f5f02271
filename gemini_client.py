import json
import logging
import os
import re
from typing import Optional

import google.generativeai as genai

logger = logging.getLogger(__name__)

GEMINI_FLASH_MODEL = os.getenv("GEMINI_FLASH_MODEL", "gemini-1.5-flash")
GEMINI_PRO_MODEL = os.getenv("GEMINI_PRO_MODEL", "gemini-1.5-pro")

GENERATION_CONFIG = {
    "temperature": 0.1,
    "top_k": 40,
    "top_p": 0.95,
    "max_output_tokens": 8192,
}

# Greedy on purpose: from the first "{" to the last "}" of the reply
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class AIGatewayError(Exception):
    pass


def extract_json(text: Optional[str]) -> Optional[dict]:
    """
    Pull the JSON object out of a free-text model reply.

    Returns None when the reply holds no ``{...}`` span at all and raises
    ValueError when the span is not valid JSON.
    """
    match = JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    return json.loads(match.group(0))


class GeminiGateway:
    """Factory for Gemini model handles plus one-shot text completion."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY")
        self._configured = False

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _configure(self):
        if not self.api_key:
            raise AIGatewayError("GEMINI_API_KEY is required in environment variables")
        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True

    def get_flash_model(self):
        self._configure()
        return genai.GenerativeModel(GEMINI_FLASH_MODEL, generation_config=GENERATION_CONFIG)

    def get_pro_model(self):
        self._configure()
        return genai.GenerativeModel(GEMINI_PRO_MODEL, generation_config=GENERATION_CONFIG)

    def generate(self, prompt: str, pro: bool = False) -> str:
        """Single completion call; there is no retry."""
        model = self.get_pro_model() if pro else self.get_flash_model()
        try:
            response = model.generate_content(prompt)
            return response.text
        except Exception as e:
            logger.error("Gemini request failed: %s", e)
            raise AIGatewayError(str(e)) from e

    def test_connection(self) -> dict:
        try:
            self._configure()
            response = genai.GenerativeModel(GEMINI_FLASH_MODEL).generate_content("Hello, are you working?")
            return {
                "success": True,
                "message": "Gemini API connection successful",
                "response": response.text,
            }
        except Exception as e:
            return {
                "success": False,
                "message": "Gemini API connection failed",
                "error": str(e),
            }


_gateway: Optional[GeminiGateway] = None


def get_ai_gateway() -> GeminiGateway:
    global _gateway
    if _gateway is None:
        _gateway = GeminiGateway()
        logger.info("Gemini API key configured: %s", "Yes" if _gateway.configured else "No")
    return _gateway
