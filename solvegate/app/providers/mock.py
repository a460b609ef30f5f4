"""Mock provider for development and load testing.

Simulates solutions without making external API calls.

Enable by setting environment variable:
    SOLVEGATE_MOCK_PROVIDER=true
"""

import asyncio
import random
from typing import Any, Optional

from solvegate.app.exceptions import UpstreamError
from solvegate.app.providers.base import BaseProvider, Completion


class MockProvider(BaseProvider):
    """Mock completion provider that returns simulated solutions.

    Features:
    - Configurable response delay
    - Token usage roughly proportional to the question length
    - Configurable failure rate for exercising error handling
    """

    name = "mock"

    def __init__(
        self,
        base_url: str = "http://mock.provider",
        api_key: str = "mock-key",
        http_client: Optional[Any] = None,
        timeout: float = 30.0,
        min_delay: float = 0.05,
        max_delay: float = 0.2,
        failure_rate: float = 0.0,
    ):
        """Initialize the mock provider.

        Args:
            base_url: Not used, provided for API compatibility
            api_key: Not used, provided for API compatibility
            http_client: Not used, provided for API compatibility
            timeout: Not used, provided for API compatibility
            min_delay: Minimum response delay in seconds
            max_delay: Maximum response delay in seconds
            failure_rate: Probability of raising UpstreamError (0-1)
        """
        super().__init__(base_url, api_key, http_client, timeout)
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate

    def _generate_content(self, subject: str, question: str) -> str:
        lowered = question.lower()

        if any(kw in lowered for kw in ("solve", "equation", "=")):
            return (
                f"Let's work through this {subject} problem step by step. "
                "First, identify what is known and what is being asked. "
                "Then isolate the unknown on one side and simplify."
            )

        if any(kw in lowered for kw in ("why", "explain", "how")):
            return (
                f"Good question. In {subject}, it helps to start from the underlying "
                "concept before looking at the specific case."
            )

        return random.choice(
            [
                "This is a mock solution for testing purposes.",
                "Mock provider is working correctly!",
                "Here's a sample explanation with some content to simulate token usage.",
            ]
        )

    async def complete(
        self,
        system_prompt: str,
        subject: str,
        question: str,
        image: Optional[str] = None,
    ) -> Completion:
        await asyncio.sleep(random.uniform(self.min_delay, self.max_delay))

        if self.failure_rate and random.random() < self.failure_rate:
            raise UpstreamError("Mock provider simulated failure")

        text = self._generate_content(subject, question)
        prompt_tokens = (len(system_prompt.split()) + len(question.split())) * 2
        completion_tokens = len(text.split()) * 2
        if image:
            prompt_tokens += 85
        return Completion(text=text, tokens=prompt_tokens + completion_tokens, model="mock-model")

    async def health_check(self, timeout: float = 2.0) -> bool:
        return True
