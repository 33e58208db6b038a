from ..utils.time import SECOND_MS, MINUTE_MS, HOUR_MS

# Lifecycle & scoring
MESSAGE_LIFESPAN_MS = 48 * HOUR_MS
SCORE_THRESHOLD_HIDE = -5    # hidden at or below

# Rate limiting (per actor)
SPAM_COOLDOWN_MS = 4 * SECOND_MS
RATE_LIMIT_WINDOW_MS = 1 * HOUR_MS
MAX_POSTS_PER_WINDOW = 10

# Privacy floor
# Obfuscation displaces every stored location by 1-5 km, whatever the zoom.
OBFUSCATION_MIN_M = 1000.0
OBFUSCATION_MAX_M = 5000.0
# Grid snapping never resolves below 2 decimals (~1.1 km edge).
PRIVACY_GRID_MAX_DECIMALS = 2

# Author farther than this from the post target -> remote
REMOTE_DISTANCE_KM = 25.0

# Spatial grid: cell edge (degrees) per resolution level, coarse -> fine.
# Every size divides 180 and 360. The last level equals the privacy grid floor.
CELL_SIZES_DEG = (10.0, 5.0, 2.0, 1.0, 0.5, 0.2, 0.1, 0.05, 0.02, 0.01)

# (min zoom, resolution level); must be sorted by both columns
ZOOM_RESOLUTION_STEPS = (
    (0, 0),
    (3, 1),
    (4, 2),
    (5, 3),
    (6, 4),
    (7, 5),
    (8, 6),
    (10, 7),
    (11, 8),
    (13, 9),
)

# City-level hubs: grid clusters closer than this merge (0 disables)
HUB_MERGE_RADIUS_M = 5000.0
# Hubs only below this zoom; at or above it the plain grid shows
HUB_MAX_ZOOM = 10.0

# Self-echo suppression
PENDING_ECHO_TTL_MS = 2 * MINUTE_MS
ECHO_MATCH_WINDOW_MS = 10 * SECOND_MS

# Feed: below this zoom sort by score, at or above by recency
FEED_SCORE_SORT_MAX_ZOOM = 9

# Submissions
MAX_TEXT_LEN = 280
BANNED_WORDS = ("spam", "scam", "buy", "sell", "crypto", "nft")

# Persistence / geocoding
STORE_TIMEOUT_S = 15
NOMINATIM_TIMEOUT_S = 25
FETCH_LIMIT = 500
UNKNOWN_CITY = "Unknown Sector"

# Service loop
REFRESH_INTERVAL_S = 60
