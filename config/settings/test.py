# config/settings/test.py
import os

from .base import *  # noqa

# SQLite by default; TEST_DB=postgres keeps the DB_* Postgres database from
# base settings so JSON containment queries run against the real backend.
if os.getenv("TEST_DB", "sqlite") != "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
        }
    }

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

RECORDS_BACKUP_ENABLED = False

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
LOGGING["loggers"]["mr_core"]["level"] = "WARNING"  # noqa: F405
