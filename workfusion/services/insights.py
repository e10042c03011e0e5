"""
AI-assisted accounting insights via OpenAI chat completions.
"""

import json
from typing import Any, Dict, List, Optional

import openai
import structlog
from openai import AsyncOpenAI

from ..errors import ProviderApiError, ProviderUnreachable, ServiceNotConfigured

logger = structlog.get_logger(__name__)

INSIGHTS_PROMPT = (
    "Analyze this user's financial data and provide 3 actionable accounting insights. "
    "Format the answer as a bullet point list."
)


class InsightsService:
    """Wraps ``AsyncOpenAI`` for the dashboard's insight panel."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model: str = "gpt-3.5-turbo",
        max_tokens: int = 200,
        temperature: float = 0.7,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def financial_insights(self, transactions: List[Dict[str, Any]]) -> str:
        """
        Ask the model for three insights on ``transactions``.

        Raises:
            ServiceNotConfigured: No OpenAI API key
            ProviderApiError: OpenAI answered with an error status
            ProviderUnreachable: OpenAI could not be reached
        """
        if self.client is None:
            raise ServiceNotConfigured("AI insights are not configured")

        content = f"{INSIGHTS_PROMPT}\n\nFinancial Data:\n{json.dumps(transactions, indent=2, default=str)}"
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APIStatusError as e:
            logger.warning("OpenAI API error", status_code=e.status_code)
            raise ProviderApiError("OpenAI", e.status_code, e.body) from e
        except openai.APIConnectionError as e:
            logger.error("OpenAI unreachable", error=str(e))
            raise ProviderUnreachable("OpenAI", log_detail=str(e)) from e

        logger.info(
            "Generated financial insights",
            model=self.model,
            transaction_count=len(transactions),
        )
        if not response.choices or not response.choices[0].message.content:
            return "No insights available"
        return response.choices[0].message.content
