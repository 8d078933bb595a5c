"""
Tally — Identity Records for a Block-Ledger Points Program
===========================================================
Keeps per-user identity (graffiti, Discord and Telegram handles, points)
and coordinates safe updates of the unique handles under concurrent
claims.  A graffiti that has mined a main-chain block is frozen.

Package layout::

    tally/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # users + blocks tables
    ├── services/
    │   ├── blocks_service.py  # Main-chain block counts per graffiti
    │   ├── user_store.py      # Transactional user store + conflict signals
    │   ├── conflicts.py       # Constraint → field classification
    │   ├── results.py         # Tagged update results
    │   └── users_updater.py   # The identity update coordinator
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / config / updater dependencies
        └── routes/users.py
"""

__version__ = "0.1.0"
