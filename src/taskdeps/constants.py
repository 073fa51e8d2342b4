STORE_FILE = "store.yaml"
LOCK_FILE = "store.lock"
CONFIG_FILE = "config.yaml"

STORE_VERSION = 1

DEFAULT_LOCK_TIMEOUT = 10.0  # seconds
DEFAULT_MAX_CONFLICT_RETRIES = 3
DEFAULT_LOG_LEVEL = "INFO"

PROGRESS_MIN = 0
PROGRESS_MAX = 100

ENV_LOCK_TIMEOUT = "TASKDEPS_LOCK_TIMEOUT"
ENV_MAX_CONFLICT_RETRIES = "TASKDEPS_MAX_CONFLICT_RETRIES"
ENV_LOG_LEVEL = "TASKDEPS_LOG_LEVEL"
