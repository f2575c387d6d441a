import json
import hashlib
import logging
from typing import Any, Dict, Hashable, List, Optional

import redis

from classbalancer.config.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class ScoreCache:
    """
    In-process memo for composite scores and meters.

    Scoped to one session (one loaded roster). Owners must call
    invalidate() whenever the roster or the criteria list changes.
    """

    def __init__(self):
        self.scores: Dict[Hashable, float] = {}
        self.meters: Dict[Hashable, Any] = {}

    def get_score(self, key: Hashable) -> Optional[float]:
        return self.scores.get(key)

    def set_score(self, key: Hashable, value: float) -> None:
        self.scores[key] = value

    def get_meters(self, key: Hashable) -> Optional[Any]:
        return self.meters.get(key)

    def set_meters(self, key: Hashable, value: Any) -> None:
        self.meters[key] = value

    def invalidate(self) -> None:
        self.scores.clear()
        self.meters.clear()

    def __len__(self) -> int:
        return len(self.scores) + len(self.meters)


class PlacementCache:
    def __init__(self, redis_url: str = settings.redis_url, client=None):
        self.redis_client = client if client is not None else redis.from_url(redis_url, decode_responses=True)

    def get(self, request_hash: str) -> Optional[Dict]:
        """Retrieve a cached placement by request hash."""
        cached = self.redis_client.get(f"placement:{request_hash}")
        if cached:
            return json.loads(cached)
        return None

    def set(self, request_hash: str, placement: Dict, ttl_seconds: int = settings.cache_ttl_seconds) -> None:
        """Cache placement with TTL (default 1 hour)."""
        self.redis_client.setex(
            f"placement:{request_hash}",
            ttl_seconds,
            json.dumps(placement, default=str)
        )

    def delete(self, request_hash: str) -> None:
        """Invalidate cache entry."""
        self.redis_client.delete(f"placement:{request_hash}")

    @staticmethod
    def hash_request(students: List[Dict], criteria: List[Dict], options: Dict) -> str:
        """Generate hash from roster, criteria and run options."""
        data = json.dumps({"students": students, "criteria": criteria, "options": options}, sort_keys=True, default=str)
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError as exc:
            logger.warning(f"Redis health check failed: {exc}")
            return False
