import logging
from typing import Any, Dict, Optional

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from datachat import config
from datachat.chart_normalizer import loads_strict
from datachat.prompt_composer import EmptyPromptError, system_prompt

logger = logging.getLogger(__name__)

REQUEST_TYPES = ("general", "chart")


class AIServiceError(Exception):
    """The AI gateway could not produce a response"""


class RateLimitError(AIServiceError):
    pass


class PaymentRequiredError(AIServiceError):
    pass


class AIServiceTimeout(AIServiceError):
    pass


class GeminiClient:
    """Client for Gemini behind an OpenAI-compatible chat completions gateway"""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or config.AI_GATEWAY_API_KEY
        self.base_url = config.AI_GATEWAY_URL
        self.model = config.AI_MODEL
        self.timeout = config.LLM_TIMEOUT_SECONDS
        self.max_tokens = 4096
        self.temperature = 0.3

        if not self.api_key:
            raise ValueError("AI_GATEWAY_API_KEY environment variable is required")

        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with the certifi bundle and transport retries"""
        session = requests.Session()
        session.verify = certifi.where()

        adapter = HTTPAdapter(
            max_retries=Retry(
                total=2,
                backoff_factor=0.3,
                status_forcelist=[500, 502, 504],
            )
        )
        session.mount("https://", adapter)
        return session

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send one chat completion request and return the reply text

        Args:
            prompt: The user message
            system: Optional system message
            temperature: Overrides the client default
            max_tokens: Overrides the client default

        Returns:
            The text of the first choice
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = self.session.post(
                self.base_url, headers=headers, json=payload, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise AIServiceTimeout("TIMEOUT: Request to the AI gateway timed out") from e
        except requests.exceptions.RequestException as e:
            raise AIServiceError(f"Request error: {e}") from e

        if response.status_code == 429:
            raise RateLimitError(
                "RATE_LIMIT_EXCEEDED: Rate limit exceeded. Please try again later."
            )
        if response.status_code == 402:
            raise PaymentRequiredError(
                "PAYMENT_REQUIRED: Please add credits to your workspace."
            )
        if response.status_code != 200:
            logger.error("AI gateway error %s: %s", response.status_code, response.text)
            raise AIServiceError(f"AI gateway error: {response.status_code}")

        try:
            return self._extract_text(response.json())
        except ValueError as e:
            raise AIServiceError(f"Invalid response from AI gateway: {e}") from e

    def _extract_text(self, response_data: Any) -> str:
        if not isinstance(response_data, dict):
            raise AIServiceError("Unexpected response shape from AI gateway")

        choices = response_data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise AIServiceError("No choices in response")

        choice = choices[0]
        if not isinstance(choice, dict):
            raise AIServiceError("Unexpected choice shape from AI gateway")

        message = choice.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if content is not None and not isinstance(content, str):
            raise AIServiceError("Unexpected message content from AI gateway")
        if not content:
            return "No response generated"
        return content

    def invoke(
        self, prompt: str, request_type: str = "general", dataset_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Ask the model a question.

        ``general`` requests return ``{"response": text}``. ``chart`` requests
        return the decoded object when the whole reply is JSON and
        ``{"response": text}`` otherwise.
        """
        if not prompt or not prompt.strip():
            raise EmptyPromptError("Prompt is required")
        if request_type not in REQUEST_TYPES:
            request_type = "general"

        logger.info(
            "Invoking %s for a %s request (dataset=%s)", self.model, request_type, dataset_id
        )
        text = self.complete(prompt, system=system_prompt(request_type))

        if request_type == "chart":
            try:
                parsed = loads_strict(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                return parsed

        return {"response": text}

    def test_connection(self) -> Dict[str, Any]:
        """Test the connection to the AI gateway"""
        try:
            result = self.complete("Reply with the single word: ok", max_tokens=5)
            return {
                "success": True,
                "message": "Connection successful",
                "test_result": result,
            }
        except AIServiceError as e:
            return {
                "success": False,
                "message": f"Connection failed: {e}",
                "test_result": None,
            }

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model"""
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "api_endpoint": self.base_url,
        }
