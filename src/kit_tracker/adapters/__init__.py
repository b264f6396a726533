"""Adapters - storage integrations for the kit tracker.

Contains:
- database.py      - KitDatabase: async engine, sessions and transactions
- repositories.py  - SQLAlchemy repositories (users, kits, change logs)
- seed.py          - Demo users and generated kits for a fresh database
"""

__all__: list[str] = []
