"""
Health check endpoint.
"""
from fastapi import APIRouter, Request

from encyclopedia_ai.core.database_pool import get_pool
from encyclopedia_ai.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check(request: Request):
    """
    Liveness plus a coarse view of the assistant's dependencies.

    The service answers "ok" even without a database: content tools then
    report the store as unavailable and the agent answers from general
    knowledge.
    """
    client = request.app.state.completion_client
    return {
        "status": "ok",
        "message": "API is running",
        "llm_configured": client.is_configured,
        "database_connected": get_pool() is not None,
    }
