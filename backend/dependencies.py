# dependencies.py — FastAPI dependency providers
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from agent_tracker import AgentRunTracker
from database import get_db_session
from lifecycle import StoryLifecycle
from presence import PresenceRegistry
from store import Store


def get_store(db: AsyncSession = Depends(get_db_session)) -> Store:
    return Store(db)


def get_lifecycle(store: Store = Depends(get_store)) -> StoryLifecycle:
    return StoryLifecycle(store)


def get_agent_tracker(store: Store = Depends(get_store)) -> AgentRunTracker:
    return AgentRunTracker(store)


def get_presence_registry(connection: HTTPConnection) -> PresenceRegistry:
    """Registry owned by the running app (HTTP and WebSocket routes alike)"""
    return connection.app.state.presence_registry
