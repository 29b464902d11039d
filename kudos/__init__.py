"""
Kudos — Engagement Engine for a City Directory
================================================
Turns the countable things people do on the directory (reviews, comments,
favorites, shares, helpful votes, visits) into points, levels, badges,
daily streaks and leaderboards.  The rest of the application calls in
through a narrow service API and never blocks on it.

Package layout::

    kudos/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Level thresholds + canonical level formula
    ├── errors.py          # Error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (profiles, badges, activity log)
    ├── engine/
    │   ├── catalog.py     # Point actions + badge definitions
    │   ├── profile.py     # In-memory profile aggregate
    │   ├── points.py      # Points ledger & stats counter
    │   ├── streak.py      # Daily streak tracker
    │   ├── badges.py      # Badge unlock evaluation
    │   ├── leaderboard.py # Sorted leaderboards per period
    │   └── pipeline.py    # Pure action pipeline
    ├── services/
    │   ├── engagement_service.py  # record_action + read API
    │   ├── profile_repository.py  # ORM ↔ profile mapping
    │   └── retry.py               # Backoff for conflicts / storage
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Action + read endpoints
"""

__version__ = "0.1.0"
