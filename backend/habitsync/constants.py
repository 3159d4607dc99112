# Base API prefix (all HTTP routes are served under /api/*)
API_PREFIX = "/api"

# Router prefixes (relative to API_PREFIX)
SESSION_PREFIX = "/session"
SYNC_PREFIX = "/sync"
