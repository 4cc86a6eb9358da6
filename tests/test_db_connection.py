#!/usr/bin/env python3
"""Quick test to verify database connectivity and schema

Runs against a live database only when MUTUM_LIVE_DB=1.
"""

import os

import psycopg2
import pytest
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

pytestmark = pytest.mark.skipif(
    os.getenv("MUTUM_LIVE_DB") != "1", reason="set MUTUM_LIVE_DB=1 to run against a live database"
)

# Database connection parameters
DB_PARAMS = {
    'host': os.getenv('DB_HOST', 'localhost'),
    'port': int(os.getenv('DB_PORT', '5432')),
    'database': os.getenv('DB_NAME', 'mutum_db'),
    'user': os.getenv('DB_USER', 'mutum_user'),
    'password': os.getenv('DB_PASSWORD', 'mutum_password')
}

EXPECTED_TABLES = {
    'auth_users', 'profiles', 'user_forms', 'products', 'production_logs',
    'production_goals', 'production_requests', 'shipments', 'shipment_items',
    'worker_settings', 'expenses', 'tools', 'tool_reports', 'harvest_seasons',
    'material_inputs',
}


def test_connection():
    """Test database connection and verify schema"""
    conn = psycopg2.connect(**DB_PARAMS)
    try:
        cursor = conn.cursor()

        cursor.execute("SELECT version();")
        print(f"PostgreSQL Version: {cursor.fetchone()[0][:80]}")

        cursor.execute("""
            SELECT tablename
            FROM pg_tables
            WHERE schemaname = 'public'
        """)
        tables = {table for (table,) in cursor.fetchall()}
        missing = EXPECTED_TABLES - tables
        assert not missing, f"Missing tables: {', '.join(sorted(missing))}"

        cursor.execute("""
            SELECT proname
            FROM pg_proc
            WHERE proname IN ('create_shipment', 'log_production_action')
        """)
        procedures = {name for (name,) in cursor.fetchall()}
        assert procedures == {'create_shipment', 'log_production_action'}, "Stock procedures missing"
    finally:
        conn.close()


if __name__ == "__main__":
    test_connection()
