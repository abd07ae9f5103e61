"""Database schema definition."""

import sqlite3

SCHEMA_SQL = """
-- Protected files and directories
CREATE TABLE IF NOT EXISTS protected_items (
    id INTEGER PRIMARY KEY,
    path TEXT NOT NULL,
    mode TEXT NOT NULL,
    redundancy INTEGER NOT NULL,
    protected_date TEXT NOT NULL,
    last_verified TEXT,
    last_status TEXT,
    last_details TEXT,
    size INTEGER DEFAULT 0,
    par2_size INTEGER DEFAULT 0,
    data_size INTEGER DEFAULT 0,
    par2_path TEXT NOT NULL,
    file_types TEXT NOT NULL DEFAULT '',
    parent_dir TEXT,
    protected_files TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(path, file_types)
);

-- Append-only verify/repair audit trail
CREATE TABLE IF NOT EXISTS verification_history (
    id INTEGER PRIMARY KEY,
    protected_item_id INTEGER NOT NULL REFERENCES protected_items(id) ON DELETE CASCADE,
    verification_date TEXT NOT NULL,
    status TEXT NOT NULL,
    details TEXT
);

-- Durable job queue
CREATE TABLE IF NOT EXISTS operation_queue (
    id INTEGER PRIMARY KEY,
    operation_type TEXT NOT NULL,
    parameters TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at REAL NOT NULL,
    started_at REAL,
    completed_at REAL,
    updated_at REAL NOT NULL,
    result TEXT,
    pid INTEGER
);

-- Captured ownership, permissions and extended attributes
CREATE TABLE IF NOT EXISTS file_metadata (
    id INTEGER PRIMARY KEY,
    protected_item_id INTEGER NOT NULL REFERENCES protected_items(id) ON DELETE CASCADE,
    file_path TEXT NOT NULL,
    owner TEXT,
    group_name TEXT,
    permissions TEXT,
    mtime REAL,
    extended_attributes TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(protected_item_id, file_path)
);

-- Notifications for external consumers
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY,
    event_type TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_protected_items_path ON protected_items(path);
CREATE INDEX IF NOT EXISTS idx_protected_items_parent
    ON protected_items(parent_dir) WHERE parent_dir IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_history_item ON verification_history(protected_item_id);
CREATE INDEX IF NOT EXISTS idx_operation_queue_status ON operation_queue(status);
CREATE INDEX IF NOT EXISTS idx_operation_queue_type ON operation_queue(operation_type);
CREATE INDEX IF NOT EXISTS idx_operation_queue_created ON operation_queue(created_at);
CREATE INDEX IF NOT EXISTS idx_file_metadata_item ON file_metadata(protected_item_id);
CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
