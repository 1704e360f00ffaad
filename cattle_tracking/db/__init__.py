"""Pool lifecycle, statement execution and generic record access."""

from cattle_tracking.db.executor import execute_query, execute_statement, execute_transaction
from cattle_tracking.db.pool import (
    close_pool,
    get_connection_info,
    get_database_config,
    get_pool,
    initialize_database,
    require_pool,
    test_connection,
)
from cattle_tracking.db.records import (
    find_by_location,
    get_records_with_pagination,
    insert_and_get_id,
    soft_delete,
    table_exists,
    update_record,
)

__all__ = [
    "close_pool",
    "execute_query",
    "execute_statement",
    "execute_transaction",
    "find_by_location",
    "get_connection_info",
    "get_database_config",
    "get_pool",
    "get_records_with_pagination",
    "initialize_database",
    "insert_and_get_id",
    "require_pool",
    "soft_delete",
    "table_exists",
    "test_connection",
    "update_record",
]
