"""Example document loaders for the example application."""

import logging
from typing import Any, Dict, List

from index_queue.registry import loader_registry

logger = logging.getLogger(__name__)

# Stand-in for the application's database
POSTS: Dict[int, Dict[str, Any]] = {
    1: {"title": "Hello", "body": "First post"},
    2: {"title": "Queues", "body": "Why index updates are queued"},
}


@loader_registry.loader("Post", id_type=int)
async def load_posts(ids: List[int]) -> Dict[int, Dict[str, Any]]:
    """Load post documents for indexing."""
    logger.info(f"Loading {len(ids)} posts for indexing")

    # In production: SELECT ... WHERE id = ANY($1)
    return {post_id: POSTS[post_id] for post_id in ids if post_id in POSTS}
