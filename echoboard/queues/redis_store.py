"""
Redis-backed job store.

Key layout per channel (``{prefix}:{channel}:...``):
- ``job:{id}``   hash holding the job fields
- ``id``         counter used to assign job ids
- ``waiting``    list of claimable job ids (FIFO)
- ``delayed``    sorted set of job ids scored by ready-at milliseconds
- ``active``     sorted set of claimed job ids scored by claim time
- ``completed``  list of finished job ids, newest first, trimmed
- ``failed``     list of dead-lettered job ids, newest first, trimmed

Claim, ack, nack and stalled recovery run as Lua scripts so each one is
a single atomic step on the server. That is what guarantees a job is
never handed to two executors at once, without any locking in Python.
"""

import logging

import redis.asyncio as redis

from echoboard.errors import QueueError
from echoboard.queues.base import BaseJobStore
from echoboard.queues.schemas import ChannelStats, Job, JobState, NackOutcome

logger = logging.getLogger(__name__)

# KEYS: waiting, delayed, active
# ARGV: job key prefix, now, token
CLAIM_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[2], 'LIMIT', 0, 1000)
for _, id in ipairs(due) do
  redis.call('ZREM', KEYS[2], id)
  redis.call('RPUSH', KEYS[1], id)
  redis.call('HSET', ARGV[1] .. id, 'state', 'waiting')
end
local id = redis.call('LPOP', KEYS[1])
if not id then
  return nil
end
local key = ARGV[1] .. id
redis.call('ZADD', KEYS[3], ARGV[2], id)
redis.call('HSET', key, 'state', 'active', 'token', ARGV[3], 'processed_at', ARGV[2])
return redis.call('HGETALL', key)
"""

# KEYS: active, completed
# ARGV: job key prefix, id, token, now, retention
ACK_SCRIPT = """
local key = ARGV[1] .. ARGV[2]
if redis.call('HGET', key, 'token') ~= ARGV[3] then
  return 0
end
if redis.call('ZREM', KEYS[1], ARGV[2]) == 0 then
  return 0
end
redis.call('HSET', key, 'state', 'completed', 'finished_at', ARGV[4])
redis.call('HDEL', key, 'token')
redis.call('LPUSH', KEYS[2], ARGV[2])
local retention = tonumber(ARGV[5])
for _, old in ipairs(redis.call('LRANGE', KEYS[2], retention, -1)) do
  redis.call('DEL', ARGV[1] .. old)
end
redis.call('LTRIM', KEYS[2], 0, retention - 1)
return 1
"""

# KEYS: active, delayed, failed
# ARGV: job key prefix, id, token, now, error, delay ms, retention
# Returns 1 (retry scheduled), 0 (dead-lettered), -1 (stale claim)
NACK_SCRIPT = """
local key = ARGV[1] .. ARGV[2]
if redis.call('HGET', key, 'token') ~= ARGV[3] then
  return -1
end
if redis.call('ZREM', KEYS[1], ARGV[2]) == 0 then
  return -1
end
local attempts = redis.call('HINCRBY', key, 'attempts', 1)
local max_attempts = tonumber(redis.call('HGET', key, 'max_attempts'))
redis.call('HDEL', key, 'token')
redis.call('HSET', key, 'last_error', ARGV[5])
if attempts < max_attempts then
  redis.call('HSET', key, 'state', 'delayed')
  redis.call('ZADD', KEYS[2], tonumber(ARGV[4]) + tonumber(ARGV[6]), ARGV[2])
  return 1
end
redis.call('HSET', key, 'state', 'failed', 'finished_at', ARGV[4])
redis.call('LPUSH', KEYS[3], ARGV[2])
local retention = tonumber(ARGV[7])
for _, old in ipairs(redis.call('LRANGE', KEYS[3], retention, -1)) do
  redis.call('DEL', ARGV[1] .. old)
end
redis.call('LTRIM', KEYS[3], 0, retention - 1)
return 0
"""

# KEYS: active, waiting
# ARGV: job key prefix, cutoff
RECOVER_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[2])
for _, id in ipairs(ids) do
  redis.call('ZREM', KEYS[1], id)
  redis.call('RPUSH', KEYS[2], id)
  redis.call('HSET', ARGV[1] .. id, 'state', 'waiting')
  redis.call('HDEL', ARGV[1] .. id, 'token')
end
return #ids
"""

# KEYS: failed, waiting
# ARGV: job key prefix, id
REPLAY_SCRIPT = """
if redis.call('LREM', KEYS[1], 1, ARGV[2]) == 0 then
  return 0
end
local key = ARGV[1] .. ARGV[2]
redis.call('HSET', key, 'state', 'waiting', 'attempts', 0)
redis.call('HDEL', key, 'finished_at')
redis.call('RPUSH', KEYS[2], ARGV[2])
return 1
"""

# KEYS: completed or failed list
# ARGV: job key prefix, cutoff
CLEAN_SCRIPT = """
local removed = 0
for _, id in ipairs(redis.call('LRANGE', KEYS[1], 0, -1)) do
  local finished = tonumber(redis.call('HGET', ARGV[1] .. id, 'finished_at') or '0')
  if finished < tonumber(ARGV[2]) then
    redis.call('LREM', KEYS[1], 1, id)
    redis.call('DEL', ARGV[1] .. id)
    removed = removed + 1
  end
end
return removed
"""


class RedisJobStore(BaseJobStore):
    """
    Job store on a single Redis connection pool.

    The store is the only component that touches the connection;
    producers and workers go through DurableQueue.

    Usage:
        store = RedisJobStore("redis://localhost:6379/0")
        async with store:
            job = await store.add(job)
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = "echoboard",
        connect_timeout: float = 30.0,
        command_timeout: float = 30.0,
    ):
        """
        Initialize the store.

        Args:
            redis_url: Redis connection URL
            prefix: Namespace for all keys
            connect_timeout: Socket connect timeout in seconds
            command_timeout: Upper bound in seconds on one command reply, so
                a server that stops answering surfaces as an error
        """
        self._redis_url = redis_url
        self._prefix = prefix
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout
        self._redis: redis.Redis | None = None

        self._claim = None
        self._ack = None
        self._nack = None
        self._recover = None
        self._replay = None
        self._clean = None

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise QueueError("Not connected to Redis. Call connect() first.")
        return self._redis

    def _key(self, channel: str, suffix: str) -> str:
        return f"{self._prefix}:{channel}:{suffix}"

    def _job_prefix(self, channel: str) -> str:
        return self._key(channel, "job:")

    async def _run(self, script, keys: list[str], args: list) -> object:
        if self._redis is None or script is None:
            raise QueueError("Not connected to Redis. Call connect() first.")
        return await script(keys=keys, args=args)

    async def connect(self) -> None:
        """Create the client and register the Lua scripts."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout,
            socket_timeout=self._command_timeout,
            health_check_interval=30,
        )

        self._claim = self._redis.register_script(CLAIM_SCRIPT)
        self._ack = self._redis.register_script(ACK_SCRIPT)
        self._nack = self._redis.register_script(NACK_SCRIPT)
        self._recover = self._redis.register_script(RECOVER_SCRIPT)
        self._replay = self._redis.register_script(REPLAY_SCRIPT)
        self._clean = self._redis.register_script(CLEAN_SCRIPT)

        logger.info(f"Redis job store ready, prefix={self._prefix}")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
            self._claim = self._ack = self._nack = None
            self._recover = self._replay = self._clean = None
            logger.info("Redis job store connection closed")

    async def ping(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def add(self, job: Job, delay_ms: int = 0) -> Job:
        channel = job.channel
        try:
            job_id = str(await self.redis.incr(self._key(channel, "id")))
            job.id = job_id
            job.state = JobState.DELAYED if delay_ms > 0 else JobState.WAITING

            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(self._job_prefix(channel) + job_id, mapping=job.to_fields())
            if delay_ms > 0:
                pipe.zadd(self._key(channel, "delayed"), {job_id: job.created_at + delay_ms})
            else:
                pipe.rpush(self._key(channel, "waiting"), job_id)
            await pipe.execute()
        except redis.RedisError as e:
            raise QueueError(f"Failed to add job to {channel}: {e}") from e

        logger.debug(f"Stored job {channel}:{job_id} ({job.type.value})")
        return job

    async def claim(self, channel: str, token: str, now: int) -> Job | None:
        try:
            result = await self._run(
                self._claim,
                keys=[
                    self._key(channel, "waiting"),
                    self._key(channel, "delayed"),
                    self._key(channel, "active"),
                ],
                args=[self._job_prefix(channel), now, token],
            )
        except redis.RedisError as e:
            raise QueueError(f"Failed to claim from {channel}: {e}") from e

        if not result:
            return None

        # HGETALL from Lua arrives as a flat [field, value, ...] list
        fields = dict(zip(result[::2], result[1::2]))
        return Job.from_fields(fields)

    async def ack(
        self,
        channel: str,
        job_id: str,
        token: str,
        now: int,
        retention: int,
    ) -> bool:
        try:
            result = await self._run(
                self._ack,
                keys=[self._key(channel, "active"), self._key(channel, "completed")],
                args=[self._job_prefix(channel), job_id, token, now, retention],
            )
        except redis.RedisError as e:
            raise QueueError(f"Failed to ack {channel}:{job_id}: {e}") from e
        return int(result) == 1

    async def nack(
        self,
        channel: str,
        job_id: str,
        token: str,
        now: int,
        error: str,
        delay_ms: int,
        retention: int,
    ) -> NackOutcome:
        try:
            result = int(await self._run(
                self._nack,
                keys=[
                    self._key(channel, "active"),
                    self._key(channel, "delayed"),
                    self._key(channel, "failed"),
                ],
                args=[self._job_prefix(channel), job_id, token, now, error, delay_ms, retention],
            ))
        except redis.RedisError as e:
            raise QueueError(f"Failed to nack {channel}:{job_id}: {e}") from e

        if result == 1:
            return NackOutcome.RETRY
        if result == 0:
            return NackOutcome.DEAD_LETTER
        return NackOutcome.STALE

    async def counts(self, channel: str) -> ChannelStats:
        try:
            pipe = self.redis.pipeline(transaction=False)
            pipe.llen(self._key(channel, "waiting"))
            pipe.zcard(self._key(channel, "active"))
            pipe.zcard(self._key(channel, "delayed"))
            pipe.llen(self._key(channel, "completed"))
            pipe.llen(self._key(channel, "failed"))
            waiting, active, delayed, completed, failed = await pipe.execute()
        except redis.RedisError as e:
            raise QueueError(f"Failed to count jobs in {channel}: {e}") from e

        return ChannelStats(
            waiting=int(waiting),
            active=int(active),
            delayed=int(delayed),
            completed=int(completed),
            failed=int(failed),
        )

    async def recover_stalled(self, channel: str, cutoff: int) -> int:
        try:
            result = await self._run(
                self._recover,
                keys=[self._key(channel, "active"), self._key(channel, "waiting")],
                args=[self._job_prefix(channel), cutoff],
            )
        except redis.RedisError as e:
            raise QueueError(f"Failed to recover stalled jobs in {channel}: {e}") from e
        return int(result)

    async def get_job(self, channel: str, job_id: str) -> Job | None:
        try:
            fields = await self.redis.hgetall(self._job_prefix(channel) + job_id)
        except redis.RedisError as e:
            raise QueueError(f"Failed to read {channel}:{job_id}: {e}") from e
        return Job.from_fields(fields) if fields else None

    async def replay_failed(self, channel: str, job_id: str) -> bool:
        try:
            result = await self._run(
                self._replay,
                keys=[self._key(channel, "failed"), self._key(channel, "waiting")],
                args=[self._job_prefix(channel), job_id],
            )
        except redis.RedisError as e:
            raise QueueError(f"Failed to replay {channel}:{job_id}: {e}") from e
        return int(result) == 1

    async def clean(self, channel: str, state: JobState, older_than: int) -> int:
        if state not in (JobState.COMPLETED, JobState.FAILED):
            raise ValueError(f"Only completed or failed jobs can be cleaned, got {state}")
        try:
            result = await self._run(
                self._clean,
                keys=[self._key(channel, state.value)],
                args=[self._job_prefix(channel), older_than],
            )
        except redis.RedisError as e:
            raise QueueError(f"Failed to clean {state.value} jobs in {channel}: {e}") from e
        return int(result)

    async def claim_schedule_slot(self, key: str, fire_at: int, ttl_ms: int) -> bool:
        try:
            return bool(await self.redis.set(
                f"{self._prefix}:repeat:{key}:{fire_at}",
                "1",
                nx=True,
                px=ttl_ms,
            ))
        except redis.RedisError as e:
            raise QueueError(f"Failed to reserve schedule slot {key}: {e}") from e
