"""Centralized constants for projgraph.

Every tunable default lives here so the service, storage and similarity
modules agree on the same values.
"""

# ─────────────────────────────────────────────────────────────────────────────
# On-disk layout
# ─────────────────────────────────────────────────────────────────────────────

MEMORY_DIR_NAME = ".mcp"
GRAPH_FILENAME = "memory.json"
CONTEXT_FILENAME = "context.json"
DEFAULT_EXPORT_FILENAME = "KNOWLEDGE_GRAPH.md"
LOCK_SUFFIX = ".lock"
TEMP_SUFFIX = ".tmp"
JSON_INDENT = 2
GRAPH_RESOURCE_URI = "mcp://memory/graph"

# ─────────────────────────────────────────────────────────────────────────────
# Cache and locking
# ─────────────────────────────────────────────────────────────────────────────

MAX_TRACKED_PROJECTS = 20
LOCK_RETRIES = 5  # retries after the first attempt
LOCK_MIN_BACKOFF = 0.05  # seconds
LOCK_MAX_BACKOFF = 1.0  # seconds
LOCK_BACKOFF_FACTOR = 2.0

# ─────────────────────────────────────────────────────────────────────────────
# Similarity
# ─────────────────────────────────────────────────────────────────────────────

OBSERVATION_SIMILARITY_THRESHOLD = 0.5
DEDUPLICATION_THRESHOLD = 0.7
DEFAULT_FUZZY_MIN_SCORE = 0.3
FUZZY_SUBSTRING_BASE = 0.8
FUZZY_WORD_BASE = 0.6
FUZZY_TIER_SPAN = 0.2
FUZZY_JACCARD_CUTOFF = 0.3
FUZZY_JACCARD_WEIGHT = 0.6
FUZZY_LEVENSHTEIN_MAX_QUERY = 20
FUZZY_LEVENSHTEIN_CUTOFF = 0.5
FUZZY_LEVENSHTEIN_WEIGHT = 0.5

# ─────────────────────────────────────────────────────────────────────────────
# Time
# ─────────────────────────────────────────────────────────────────────────────

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
SECONDS_PER_MONTH = 2592000  # 30 days
SECONDS_PER_YEAR = 31536000  # 365 days
