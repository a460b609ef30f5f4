"""OpenAI API provider implementation.

Compatible with OpenAI API and other OpenAI-compatible endpoints
(e.g., Azure OpenAI, local LLMs with OpenAI-compatible API).
"""

from typing import Any, Dict, List, Optional

import httpx

from solvegate.app.core.logging import get_logger
from solvegate.app.exceptions import UpstreamError
from solvegate.app.providers.base import BaseProvider, Completion

logger = get_logger(__name__)

USER_MESSAGE_TEMPLATE = "Please help me understand this problem: {question}"


def _image_url(image: str) -> str:
    """Accept either a data URL or bare base64 and return a data URL."""
    if image.startswith("data:") or image.startswith("http"):
        return image
    return f"data:image/jpeg;base64,{image}"


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions provider.

    If http_client is provided, it will be used for all requests (connection reuse).
    If not, a new client is created per-request.
    """

    name = "openai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str = "gpt-4o-mini",
        max_tokens: int = 1000,
        temperature: float = 0.7,
        organization: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """Initialize OpenAI provider.

        Args:
            base_url: The OpenAI API base URL
            api_key: The OpenAI API key
            model: Chat model name
            max_tokens: Hard ceiling on generated tokens per call
            temperature: Sampling temperature
            organization: Optional organization ID
            http_client: Optional shared HTTP client
            timeout: Request timeout in seconds
        """
        super().__init__(base_url, api_key, http_client, timeout)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.organization = organization

        if organization:
            self.headers["OpenAI-Organization"] = organization

    def build_messages(
        self,
        system_prompt: str,
        question: str,
        image: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Build the chat messages for a solve.

        With an image the user turn becomes a multi-part content list so
        vision-capable models receive the picture alongside the text.
        """
        text = USER_MESSAGE_TEMPLATE.format(question=question)
        if image:
            user_content: Any = [
                {"type": "text", "text": f"{text} [Image provided]"},
                {"type": "image_url", "image_url": {"url": _image_url(image)}},
            ]
        else:
            user_content = text

        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

    async def chat_completion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send a non-streaming chat completion request.

        Raises:
            httpx.HTTPStatusError: If the API returns an error
        """
        url = self._get_endpoint_url("/chat/completions")
        async with self._client_context() as client:
            resp = await client.post(url, headers=self.headers, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()

    async def complete(
        self,
        system_prompt: str,
        subject: str,
        question: str,
        image: Optional[str] = None,
    ) -> Completion:
        payload = {
            "model": self.model,
            "messages": self.build_messages(system_prompt, question, image),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

        try:
            data = await self.chat_completion(payload)
        except httpx.TimeoutException as e:
            logger.warning("Provider request timed out", extra={"provider": self.name})
            raise UpstreamError("The solver took too long to respond. Please try again.") from e
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Provider returned error status",
                extra={"provider": self.name, "status_code": e.response.status_code},
            )
            raise UpstreamError() from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Provider request failed",
                extra={"provider": self.name, "error": str(e)},
            )
            raise UpstreamError() from e

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError("Malformed response from solver") from e

        usage = data.get("usage") or {}
        tokens = int(usage.get("total_tokens") or 0)
        return Completion(text=text, tokens=tokens, model=data.get("model", self.model))

    async def health_check(self, timeout: float = 2.0) -> bool:
        """Call the /models endpoint with a short timeout."""
        try:
            url = self._get_endpoint_url("/models")
            async with self._client_context() as client:
                resp = await client.get(url, headers=self.headers, timeout=timeout)
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
