#!/usr/bin/env python3
"""
Create all tables for the configured DATABASE_URL.
Run from the project root: python -m scripts.init_db
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.db.base import Base
from app.db.session import engine


def main():
    Base.metadata.create_all(bind=engine)
    for name in sorted(Base.metadata.tables):
        print(f"  {name}")


if __name__ == "__main__":
    main()
