"""Project defaults and payload key constants."""

RSSI_KEY = "rssi"
DEVICE_ID_KEY = "did"
SERIAL_PATH_KEY = "sp"
MANUFACTURER_KEY = "mf"
MESSAGE_KEY = "msg"

DEFAULT_CONFIG_FILE = "config.json"
CONFIG_PATH_ENV = "CONFIG_PATH"

DEFAULT_RSSI = "-50"
DEFAULT_BAUD_RATE = 115200
DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8888
DEFAULT_CLIENT_URL = f"http://localhost:{DEFAULT_HTTP_PORT}"

# Settle delay after each bring-up write, in seconds:
# restart, +++, role, restart, +++
BRING_UP_SETTLE_SEC = (3.0, 0.5, 0.5, 2.0, 1.0)

# Seen-manufacturer set is cleared on this period while scanning.
DEFAULT_REPORT_INTERVAL_MS = 5000
# Detections kept for the catch-up event sent when reporting is enabled.
DETECTION_RETENTION_SEC = 1.0

RECONNECT_BASE_DELAY_SEC = 10.0
RECONNECT_MAX_ATTEMPTS = 5

HEARTBEAT_INTERVAL_SEC = 2.0

SERIAL_TRANSPORT_RECONNECT_SEC = 5.0
SERIAL_TRANSPORT_MAX_RECONNECTS = 10
SERIAL_READ_TIMEOUT_SEC = 0.5
