import json


def _key(scope: str, idem_key: str) -> str:
    return f"idem:{scope}:{idem_key}"


async def get_cached_response(redis, scope: str, idem_key: str) -> tuple[int, dict] | None:
    """Return (status_code, body) stored for this key, if any.

    `scope` keeps keys from different routes and callers apart.
    """
    if redis is None or not idem_key:
        return None
    raw = await redis.get(_key(scope, idem_key))
    if not raw:
        return None
    cached = json.loads(raw)
    return int(cached["status_code"]), cached["body"]


async def set_cached_response(redis, scope: str, idem_key: str, status_code: int, body: dict, ttl_seconds: int = 300):
    if redis is None or not idem_key:
        return
    payload = json.dumps({"status_code": status_code, "body": body})
    await redis.setex(_key(scope, idem_key), ttl_seconds, payload)
