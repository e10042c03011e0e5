"""
AI insights route.
"""

from typing import Any, Dict, List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..middleware.auth import Container, CurrentUser
from ..utils.responses import success_envelope

router = APIRouter(prefix="/api/ai")


class InsightsRequest(BaseModel):
    transactions: List[Dict[str, Any]] = Field(..., description="Transactions to analyse")


@router.post("/insights", summary="Accounting insights for a set of transactions")
async def financial_insights(
    body: InsightsRequest, user_id: CurrentUser, container: Container
) -> Dict[str, Any]:
    insights = await container.insights.financial_insights(body.transactions)
    return success_envelope({"insights": insights}, "openai")
