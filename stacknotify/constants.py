"""Throttle windows, cache key prefixes, stream names and read sizes.

Throttle values are fixed rather than configurable: every worker sharing a
cache must agree on them.
"""

from datetime import timedelta

# Throttling (not user-configurable)
STACK_THROTTLE_KEY_PREFIX = "notify:stack-throttle:"
PROJECT_THROTTLE_KEY_PREFIX = "notify:project-throttle:"
STACK_THROTTLE_MIN_OCCURRENCES = 2  # Stack throttling kicks in above this count
STACK_THROTTLE_WINDOW = timedelta(minutes=30)
STACK_THROTTLE_TTL = timedelta(minutes=15)  # Last-sent marker expires before the window closes
PROJECT_THROTTLE_WINDOW = timedelta(minutes=30)
PROJECT_THROTTLE_LIMIT = 10  # Max non-regression notifications per project window

# Digest limits
SUMMARY_NEWEST_LIMIT = 5
SUMMARY_MOST_FREQUENT_LIMIT = 5

# Billing
FREE_PLAN_ID = "EX_FREE"

# Response code carried by notifications for missing pages
NOT_FOUND_CODE = "404"

# Redis stream names per message kind
STREAM_PREFIX = "stacknotify"
CONSUMER_GROUP = "stacknotify-workers"
READ_BATCH_SIZE = 10
READ_BLOCK_MS = 1000
PENDING_RECOVERY_BATCH_SIZE = 50

# Redis internal settings
REDIS_MAX_CONNECTIONS = 10
REDIS_SOCKET_TIMEOUT = 30

# Webhook delivery
WEBHOOK_DELIVERY_TIMEOUT_S = 10.0

