"""Redis Lua script for the shared quota ledger.

The whole prune/count/check/append for every key of a request runs as one
script, so concurrent gateway instances can never interleave a read and a
write on the same key.
"""

# KEYS[i]: one sorted set per limiting key, scored by admission timestamp
# ARGV[1]: now (score of the new entry)
# ARGV[2]: member of the new entry (unique per admission)
# ARGV[3i..3i+2] for KEYS[i]: budget, cutoff (now - window), ttl in ms
#
# Returns {1, 0, ''} when every key had room and the entry was added to all,
# or {0, i, score} for the first full key, where score is the timestamp that
# has to leave the window before KEYS[i] has room again. Nothing is added
# when any key is full.
CHECK_AND_RECORD_SCRIPT = """
    local now = ARGV[1]
    local member = ARGV[2]

    for i = 1, #KEYS do
        local base = 2 + (i - 1) * 3
        local budget = tonumber(ARGV[base + 1])
        local cutoff = ARGV[base + 2]

        -- Entries at or before the cutoff are outside (now - window, now]
        redis.call('ZREMRANGEBYSCORE', KEYS[i], '-inf', cutoff)

        local count = redis.call('ZCOUNT', KEYS[i], '(' .. cutoff, now)
        if count >= budget then
            local blocking = redis.call(
                'ZRANGEBYSCORE', KEYS[i], '(' .. cutoff, now,
                'WITHSCORES', 'LIMIT', count - budget, 1
            )
            return {0, i, blocking[2]}
        end
    end

    for i = 1, #KEYS do
        local base = 2 + (i - 1) * 3
        redis.call('ZADD', KEYS[i], now, member)
        redis.call('PEXPIRE', KEYS[i], ARGV[base + 3])
    end

    return {1, 0, ''}
"""
