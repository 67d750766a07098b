# config.py — winter bikeway priority pipeline configuration
# Edit this file to change match thresholds, grid sizes, attribute codes, etc.

# ── Matching thresholds ──────────────────────────────────────────────
# Max distance (metres) between a bike route and a reference line for the
# reference line's priority to apply.
MAX_MATCH_METERS = 30.0

# Max difference (degrees) between two compared segments' bearings.  Segment
# pairs that disagree by more than this don't contribute to the distance.
MAX_SEGMENT_ANGLE_DEG = 30.0

# Max difference (degrees) between the start-to-end bearings of the two whole
# lines.  0 disables the coarse overall-bearing filter.
MAX_OVERALL_ANGLE_DEG = 60.0

# Distance window (metres) past the nearest candidate in which a higher
# priority line wins over a strictly nearer one.
PRIORITY_BIAS_METERS = 1.0

# ── Geometry ─────────────────────────────────────────────────────────
EARTH_RADIUS_M = 6378137.0

# Spatial index resolution (cells across the reference set's bbox).
INDEX_GRID_COLS = 64
INDEX_GRID_ROWS = 64

# ── Binary output ────────────────────────────────────────────────────
# Fixed grid used to bucket output features for viewport culling.
SEGMENT_GRID_COLS = 8
SEGMENT_GRID_ROWS = 4

# Coordinates are written as int32 deltas of 1e-6 degrees.
COORD_SCALE = 1_000_000

# ── Attribute codes ──────────────────────────────────────────────────
PRIORITY_PREFIX = "PRI"
VALID_PRIORITIES = (1, 2, 3)

# Not-plowed flag on WINT_PLOW.
NOT_PLOWED = "N"

# OWNER value for privately maintained travelways.
PRIVATE_OWNER = "PRIV"

# BIKETYPE codes that are protected (separated) facilities.
PROTECTED_BIKE_TYPES = {"PROTBL", "PBL"}

# PROT_TYPE values that mean "no protection".
TRIVIAL_PROTECTION = {"", "NONE", "N/A"}

# Generic titles for bike routes with no name of their own.
BIKE_TYPE_LABELS = {
    "PROTBL": "Protected Bike Lane",
    "PBL": "Protected Bike Lane",
    "BL": "Bike Lane",
    "BUFBL": "Buffered Bike Lane",
    "LSB": "Local Street Bikeway",
    "MUP": "Multi-Use Path",
    "ONSTREET": "On-Street Bike Route",
}
DEFAULT_BIKE_TITLE = "Bike Route"

# Street renames applied before title-casing (keys are upper-case).
TITLE_RENAMES = {
    "CORNWALLIS ST": "NORA BERNARD ST",
}

# ── Priority schedule ────────────────────────────────────────────────
# Clearing timeline per priority, in hours after the storm ends.
PRIORITY_TIMELINE_HOURS = {1: 12, 2: 18, 3: 36}

# ── Travelways export ────────────────────────────────────────────────
TRAVELWAYS_EXPORT_URL = (
    "https://hub.arcgis.com/api/download/v1/items/"
    "a3631c7664ef4ecb93afb1ea4c12022b/geojson"
    "?redirect=false&layers=0&spatialRefId=4326"
)
EXPORT_POLL_INTERVAL = 5
EXPORT_DEADLINE = 300
HTTP_TIMEOUT = 60
HTTP_MAX_RETRIES = 3

# ── Output files ─────────────────────────────────────────────────────
TRAVELWAYS_OUT = "features.bin"
BIKE_OUT = "features_cycling.bin"
PRIORITIES_OUT = "priorities.json"
LOG_FILE = "build_features.log"
