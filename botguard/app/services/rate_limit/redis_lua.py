"""Redis Lua scripts for distributed rate limiting.

The whole read-refill-compare-write sequence runs inside Redis so concurrent
callers on any instance never observe an intermediate bucket state.
"""

# KEYS[1]: bucket key
# ARGV: capacity, tokens requested, refill rate (tokens/s), now (epoch seconds)
# Returns {1, capacity - tokens_left} when allowed, {0, 0, retry_after_seconds} when denied.
# Redis truncates Lua numbers to integers in replies; the stored tokens stay fractional.
TOKEN_BUCKET_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local requested = tonumber(ARGV[2])
    local refill_rate = tonumber(ARGV[3])
    local now = tonumber(ARGV[4])

    local bucket = redis.call('HMGET', key, 'tokens', 'lastRefill')
    local tokens = tonumber(bucket[1]) or capacity
    local last_refill = tonumber(bucket[2]) or now

    local elapsed = math.max(0, now - last_refill)
    tokens = math.min(capacity, tokens + elapsed * refill_rate)

    local ttl = math.ceil(capacity / refill_rate)

    if tokens >= requested then
        tokens = tokens - requested
        redis.call('HSET', key, 'tokens', tostring(tokens), 'lastRefill', now)
        redis.call('EXPIRE', key, ttl)
        return {1, capacity - tokens}
    end

    -- Persist the refill even on denial
    redis.call('HSET', key, 'tokens', tostring(tokens), 'lastRefill', now)
    redis.call('EXPIRE', key, ttl)
    local retry_after = math.ceil((requested - tokens) / refill_rate)
    return {0, 0, retry_after}
"""
