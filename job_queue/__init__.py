"""
Job Queue — Durable named queues with priority, delay, retry and cron repeats.

- Redis sorted sets (production) and in-memory heaps (dev/tests)
- QueueWorker leases jobs with bounded concurrency
"""
