# backend/config.py
# Environment-aware configuration for the project management backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration for API access tokens
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", "60"))

# Remote document store (backend-as-a-service)
# Empty URL disables the remote path; every call then goes to local storage
REMOTE_STORE_URL = os.environ.get("REMOTE_STORE_URL", "").strip().rstrip("/")
REMOTE_STORE_API_KEY = os.environ.get("REMOTE_STORE_API_KEY", "").strip() or None
REMOTE_TIMEOUT_SECONDS = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", "10"))

# Remote identity provider
# Empty URL forces demo mode
IDENTITY_URL = os.environ.get("IDENTITY_URL", "").strip().rstrip("/")
IDENTITY_PROBE_TIMEOUT = float(os.environ.get("IDENTITY_PROBE_TIMEOUT", "3.0"))

# Local key-value storage (fallback store)
# Any SQLAlchemy URL works; "sqlite://" keeps everything in memory
LOCAL_STORAGE_URL = os.environ.get("LOCAL_STORAGE_URL", "sqlite:///project_local.db").strip()

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]

_extra_origins = os.environ.get("CORS_ORIGINS", "")
if _extra_origins:
    CORS_ORIGINS.extend(o.strip() for o in _extra_origins.split(",") if o.strip())

LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG" if IS_DEV else "INFO").upper()
