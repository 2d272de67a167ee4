"""
Feed publisher — downstream sink for approved proposals.

The default implementation writes a feed_posts row in the caller's
session; other sinks only need to satisfy the FeedPublisher protocol.
"""

import uuid
from typing import Optional, Protocol

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.db.models import FeedPost

logger = structlog.get_logger(__name__)


class FeedPublishRequest(BaseModel):
    title: str
    body: str
    reference_id: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    media_url: Optional[str] = None
    type: str = "proposal"


class FeedPublisher(Protocol):
    async def publish(self, session: AsyncSession, request: FeedPublishRequest) -> str:
        """Publish and return the feed post id."""
        ...


class DatabaseFeedPublisher:
    """Writes posts to the feed_posts table."""

    async def publish(self, session: AsyncSession, request: FeedPublishRequest) -> str:
        post = FeedPost(
            type=request.type,
            title=request.title,
            body=request.body,
            reference_id=request.reference_id,
            created_by=request.created_by,
            media_url=request.media_url,
        )
        session.add(post)
        await session.flush()
        logger.info("feed_post_published", post_id=str(post.id), reference_id=request.reference_id)
        return str(post.id)
