"""Default settings for the CT watch manager."""

VERSION = "1.0.0"

LOG_LIST_URL = "https://www.gstatic.com/ct/log_list/v3/log_list.json"
DEFAULT_USER_AGENT = f"CT-Watch/{VERSION}"

DEFAULT_POLL_INTERVAL = 5.0  # seconds between polls of one log
DEFAULT_WINDOW_SIZE = 1000  # max entries retrieved per poll
DEFAULT_QUEUE_CAPACITY = 1000
DEFAULT_FILTER_WORKERS = 5
DEFAULT_TIMEOUT = 30.0
DEFAULT_LOG_LIST_TIMEOUT = 10.0
DEFAULT_MAX_CONNECTIONS = 100
DEFAULT_MAX_KEEPALIVE_CONNECTIONS = 20

# Logs allowed to lag more than a day behind submissions are not worth watching
MAX_MMD_SECONDS = 86400
