"""Constants and configuration for speedprobe."""

# Quality class thresholds on download throughput (Mbps).
# A value exactly on a threshold belongs to the higher class.
EXCELLENT_THRESHOLD_MBPS = 50.0
GOOD_THRESHOLD_MBPS = 25.0
FAIR_THRESHOLD_MBPS = 10.0
# Poor: < 10 Mbps

# Share of overall progress owned by each measurement phase.
PHASE_WEIGHTS = {
    "ping": 0.2,
    "download": 0.4,
    "upload": 0.4,
}

# Latency prober defaults
DEFAULT_PING_SAMPLES = 5
DEFAULT_INTER_SAMPLE_DELAY = 0.2  # seconds
DEFAULT_PROBE_TIMEOUT = 5.0

# Throughput meter defaults
DEFAULT_DOWNLOAD_BYTES = 25_000_000
DEFAULT_UPLOAD_BYTES = 2_000_000
DEFAULT_TRANSFER_TIMEOUT = 30.0
PROGRESS_QUANTUM_BYTES = 256 * 1024  # emit download progress at most once per quantum
STREAM_CHUNK_SIZE = 64 * 1024

# Discovery scanner defaults
SCAN_CONCURRENCY = 20
SCAN_PROBE_TIMEOUT = 1.0
SCAN_HTTP_TIMEOUT = 2.0
SCAN_FINGERPRINT_BUDGET = 6.0
SCAN_FIRST_HOST = 1
SCAN_LAST_HOST = 254
FINGERPRINT_HTTP_PORTS = (80, 8080, 443, 8443, 8000, 8888)
TLS_PORTS = (443, 8443)
MDNS_PORT = 5353
MAX_TITLE_LENGTH = 50
GATEWAY_SUFFIXES = (1, 254)

# Address-range heuristics (last octet, inclusive bounds)
ROUTER_OCTET_MAX = 9
WORKSTATION_OCTET_MAX = 99
MOBILE_OCTET_MAX = 199

# Storage
SCAN_CACHE_MAX_AGE = 3600.0  # seconds
MAX_HISTORY_ITEMS = 100
APP_NAME = "speedprobe"
HISTORY_FILENAME = "history.json"
SCAN_CACHE_FILENAME = "last_scan.json"

# Low-speed alert default threshold (Mbps)
DEFAULT_LOW_SPEED_THRESHOLD = 10.0

# CSV export header (column order is part of the export format)
CSV_HEADER = [
    "Date",
    "Download Speed (Mbps)",
    "Upload Speed (Mbps)",
    "Ping (ms)",
    "Jitter (ms)",
    "Connection Type",
    "Quality",
]

# User agent for HTTP requests
USER_AGENT = "speedprobe/0.1.0"

# Phase display names
PHASE_LABELS = {
    "idle": "Ready",
    "connecting": "Connecting",
    "ping": "Testing Ping",
    "download": "Testing Download",
    "upload": "Testing Upload",
    "complete": "Complete",
    "error": "Error",
}

# Latency color thresholds (milliseconds) for terminal output
FAST_THRESHOLD_MS = 20.0
MEDIUM_THRESHOLD_MS = 50.0
