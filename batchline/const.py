"""Constants for the batchline delivery layer."""

import os
from pathlib import Path

API_HOST = os.getenv("BATCHLINE_API_HOST", "api.segment.io/v1")
CDN_HOST = os.getenv("BATCHLINE_CDN_HOST", "cdn-settings.segment.com/v1")

BATCH_UPLOAD_PATH = "/b"
SETTINGS_PATH_TEMPLATE = "/projects/{write_key}/settings"

REQUEST_TIMEOUT_SECS = 60

# Batch file framing. The header is written with write_line so it ends in "\n".
BATCH_HEADER = '{ "batch": ['
LINE_DELIMITER = b"\n"
READY_EXTENSION = "temp"

TAIL_WINDOW_BYTES = 256
READ_BUFFER_SIZE = 4096

DEFAULT_BASE_FILENAME = "segment-events"
DEFAULT_MAX_FILE_SIZE = 475_000  # (~475kb, under the 500kb batch limit)
DEFAULT_MAX_BATCH_BYTES = 500_000
DEFAULT_FLUSH_COUNT = 20
DEFAULT_INDEX_KEY = "batchline.queue.index"

CONFIG_DIR = Path.home() / ".batchline"
DEFAULT_STORAGE_PATH = CONFIG_DIR / "queue"
CONFIG_FILE = "config.yaml"
INDEX_DB_FILENAME = ".index.db"

# Leading lines of a rejected batch echoed to the log for diagnosis.
REJECTED_BATCH_LOG_LINES = 20
