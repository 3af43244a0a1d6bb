import time


def _field(data: dict, name: str, default: float) -> float:
    # Clients built with or without decode_responses hand back str or bytes keys.
    value = data.get(name.encode(), data.get(name))
    return float(value) if value is not None else default


async def token_bucket(redis, key: str, capacity: int, refill_per_sec: float) -> bool:
    """Take one token from the bucket for `key`; False when it is empty.

    Without a Redis client there is no limit.
    """
    if redis is None or capacity <= 0:
        return True

    bucket_key = f"rl:{key}"
    now = time.time()

    state = await redis.hgetall(bucket_key)
    elapsed = max(0.0, now - _field(state, "last", now))
    available = min(float(capacity), _field(state, "tokens", capacity) + elapsed * refill_per_sec)

    allowed = available >= 1.0
    if allowed:
        available -= 1.0

    # An idle bucket is full again after capacity / rate seconds; keep it no longer than that.
    ttl = int(capacity / refill_per_sec) + 1 if refill_per_sec > 0 else 3600
    async with redis.pipeline(transaction=True) as pipe:
        pipe.hset(bucket_key, mapping={"tokens": available, "last": now})
        pipe.expire(bucket_key, ttl)
        await pipe.execute()
    return allowed
