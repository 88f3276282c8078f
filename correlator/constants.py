"""Default values shared across correlator modules."""

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000
DEFAULT_SCAN_BATCH_SIZE = 200
DEFAULT_STORE_TIMEOUT = 5.0

SUPERADMIN_CLAIM = "can_manage_process_instances"
READER_CLAIM = "can_read_process_instances"
PURGE_CLAIM = "can_delete_process_model"
