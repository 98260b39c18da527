"""Tuning constants for the thought space.

Kept in one module so engines, tests and adapters agree on the same numbers.
"""

# --- Content limits ---
MAX_CONTENT_LENGTH = 10_000
MAX_CONTEXT_LENGTH = 2_000
MAX_AGENT_ID_LENGTH = 100
MAX_AGENT_NAME_LENGTH = 200
CONTENT_PREVIEW_LENGTH = 80

# --- Pheromone weight ---
PHEROMONE_MIN = 0.1
PHEROMONE_MAX = 10.0
PHEROMONE_INITIAL = 1.0
PHEROMONE_REINFORCEMENT = 0.05  # per retrieval
PHEROMONE_FEEDBACK_BOOST = 0.02  # implicit session feedback
PHEROMONE_DECAY_FACTOR = 0.995  # per decay pass
INHERITANCE_FACTOR = 0.5  # derived thoughts start at half their sources' weight

# --- Telemetry windows ---
ACCESS_LOG_CAPACITY = 100
CO_RETRIEVAL_CAPACITY = 50

# --- Retrieval ---
DEFAULT_RETRIEVE_LIMIT = 10
MIN_RETRIEVE_LIMIT = 1
MAX_RETRIEVE_LIMIT = 100
SUPERSEDED_PENALTY = 0.7
SYNTHESIS_BOOST = 1.2
MAX_ADJUSTED_SCORE = 1.0
DEFAULT_SOURCES_LIMIT = 5

# --- Disambiguation ---
DISAMBIGUATION_MIN_RESULTS = 10
DISAMBIGUATION_MIN_TAGS = 3
DISAMBIGUATION_CLUSTER_LIMIT = 5

# --- Contribution gate and quality heuristics ---
CONTRIBUTION_MIN_LENGTH = 50  # strictly greater than this
FOLLOW_UP_PREFIXES = (
    "based on",
    "you said",
    "you told me",
    "regarding your",
    "about your response",
)
ECHO_OVERLAP_THRESHOLD = 0.6
ECHO_RECENT_QUERIES = 5
SIGNIFICANT_WORD_MIN_LENGTH = 3  # words must be longer than 2 characters
ORPHANED_REFERENCE_MAX_LENGTH = 150

# --- Lineage ---
DEFAULT_LINEAGE_DEPTH = 10

# --- Highways ---
DEFAULT_HIGHWAY_MIN_ACCESS = 3
DEFAULT_HIGHWAY_MIN_USERS = 2
DEFAULT_HIGHWAY_LIMIT = 20
HIGHWAYS_NEARBY_LIMIT = 5
CONTEXT_POOL_FACTOR = 3

# --- Decay ---
DECAY_INTERVAL_SECONDS = 3600
DECAY_IDLE_SECONDS = 3600
SCAN_PAGE_SIZE = 100

# --- Storage ---
DEFAULT_COLLECTION = "thought_space"
DEFAULT_KNOWLEDGE_SPACE = "ks-default"
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_EMBEDDING_DIMENSION = 384
DATABASE_FILENAME = "thoughtspace.db"
