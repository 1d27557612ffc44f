#!/usr/bin/env python3
"""
Create the MedRecords tables in the database named by DB_URI.
Run this once before starting the API server.
"""

from sqlalchemy import inspect

from medrecords.database import init_engine

if __name__ == "__main__":
    print("=" * 60)
    print("MedRecords Database Setup")
    print("=" * 60)

    engine = init_engine()
    tables = sorted(inspect(engine).get_table_names())

    print(f"\nDatabase dialect: {engine.dialect.name}")
    print("Tables present:")
    for name in tables:
        print(f"  - {name}")
    print("\n" + "=" * 60)
