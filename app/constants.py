MAX_COST_CAP = 100
DURATION_INTERVAL_MS = 30_000
COMPLEXITY_INTERVAL_NODES = 10
WORKFLOW_BASE_COST = 1
DEFAULT_BASE_COST = 1

# pre-flight workflow estimate scenarios
WORKFLOW_MIN_DURATION_MS = 1_000
WORKFLOW_MAX_DURATION_MS = 120_000
WORKFLOW_MIN_NODE_SHARE = 0.3
WORKFLOW_MIN_PREMIUM_SHARE = 0.5

# gateway mount points stripped before endpoint cost lookup
MOUNT_PREFIXES = ("/api/v1", "/api", "/v1")
BATCH_PAYLOAD_FIELDS = ("texts", "documents", "items", "files")

RATE_LIMIT_WINDOW_MS = 60_000
RATE_LIMIT_PREFIX = "tier-ratelimit:"
SWEEP_INTERVAL_SECONDS = 60.0
NO_LIMIT = 2**31 - 1

MAX_REQUEST_BODY_BYTES = 1_048_576
