import sqlite3
from urllib.parse import urlparse

import psycopg2
from psycopg2.extras import RealDictCursor


class DatabaseManager:
    def __init__(self, db_url: str):
        self.db_url = db_url
        self.parsed_url = urlparse(db_url)
        self.db_type = self.parsed_url.scheme

    @property
    def placeholder(self) -> str:
        return "?" if self.db_type == "sqlite" else "%s"

    def get_connection(self):
        """Get a raw database connection."""
        if self.db_type == 'sqlite':
            # Remove 'sqlite:///' or 'sqlite://' prefix
            path = self.db_url.replace('sqlite:///', '').replace('sqlite://', '')
            conn = sqlite3.connect(path)
            conn.row_factory = sqlite3.Row  # Access columns by name
            return conn
        elif self.db_type == 'postgresql' or self.db_type == 'postgres':
            return psycopg2.connect(self.db_url, cursor_factory=RealDictCursor)
        else:
            raise ValueError(f"Unsupported database type: {self.db_type}")

    def execute_script(self, script: str):
        """Execute a raw SQL script."""
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.executescript(script) if self.db_type == 'sqlite' else cursor.execute(script)
            conn.commit()
        finally:
            conn.close()

    def init_db(self):
        """Create the app store tables when they do not exist yet."""
        if self.db_type == 'sqlite':
            self.execute_script(CREATE_SCRIPT_SQLITE)
        else:
            self.execute_script(CREATE_SCRIPT_POSTGRES)

CREATE_SCRIPT_SQLITE = """
CREATE TABLE IF NOT EXISTS stores (
    id TEXT PRIMARY KEY,
    slug TEXT UNIQUE NOT NULL,
    name TEXT,
    format TEXT NOT NULL DEFAULT 'custom',
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS apps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    app_id TEXT NOT NULL,
    store_id TEXT,
    title TEXT,
    name TEXT,
    icon TEXT,
    version TEXT,
    port TEXT,
    path TEXT,
    compose_path TEXT,
    dependencies TEXT,
    container TEXT,
    created_at TEXT,
    updated_at TEXT,
    FOREIGN KEY(store_id) REFERENCES stores(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS installed_apps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    app_id TEXT NOT NULL,
    container_name TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    icon TEXT NOT NULL,
    install_config TEXT,
    store_id TEXT,
    container TEXT,
    version TEXT,
    created_at TEXT,
    updated_at TEXT
);
"""

CREATE_SCRIPT_POSTGRES = """
CREATE TABLE IF NOT EXISTS stores (
    id TEXT PRIMARY KEY,
    slug TEXT UNIQUE NOT NULL,
    name TEXT,
    format TEXT NOT NULL DEFAULT 'custom',
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS apps (
    id SERIAL PRIMARY KEY,
    app_id TEXT NOT NULL,
    store_id TEXT REFERENCES stores(id) ON DELETE CASCADE,
    title TEXT,
    name TEXT,
    icon TEXT,
    version TEXT,
    port TEXT,
    path TEXT,
    compose_path TEXT,
    dependencies JSONB,
    container JSONB,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS installed_apps (
    id SERIAL PRIMARY KEY,
    app_id TEXT NOT NULL,
    container_name TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    icon TEXT NOT NULL,
    install_config JSONB,
    store_id TEXT,
    container JSONB,
    version TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);
"""
