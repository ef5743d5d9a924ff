import redis.asyncio as redis
from order_service.config import settings

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


IDEMPOTENCY_IN_PROGRESS = "in_progress"
IDEMPOTENCY_DONE = "done"


async def claim_idempotency(key: str, ttl_seconds: int | None = None) -> str | None:
    """
    Claim key for a new request. Returns None if we claimed it -> caller should proceed,
    then call complete_idempotency on success or release_idempotency on failure.
    Otherwise returns the state held by the earlier request: IDEMPOTENCY_DONE once it
    committed, IDEMPOTENCY_IN_PROGRESS while it is still running.
    """
    r = await get_redis()
    ttl = ttl_seconds or settings.idempotency_ttl_seconds
    if await r.set(key, IDEMPOTENCY_IN_PROGRESS, nx=True, ex=ttl):
        return None
    state = await r.get(key)
    if state is None:
        # earlier holder released between SET and GET; try once more
        if await r.set(key, IDEMPOTENCY_IN_PROGRESS, nx=True, ex=ttl):
            return None
        state = await r.get(key)
    return state or IDEMPOTENCY_IN_PROGRESS


async def complete_idempotency(key: str, ttl_seconds: int | None = None) -> None:
    """Mark key as processed; later requests with it replay the current state."""
    r = await get_redis()
    await r.set(key, IDEMPOTENCY_DONE, ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_idempotency(key: str) -> None:
    """Forget key so a request that failed before committing can be retried."""
    r = await get_redis()
    await r.delete(key)
