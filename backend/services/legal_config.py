"""
Legal Review Hub - Runtime Configuration

Environment-driven settings for the legal review workflow service.
Values are read once at import time; server.py loads .env before importing services.

Feature Flag: AZURE_FUNCTIONS_ENABLED
- When True: permission changes are pushed to the APIM-fronted Azure Functions
- When False: permission calls are skipped and logged
"""

import os


# =============================================================================
# STORAGE
# =============================================================================

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "legal_review_hub")

REQUESTS_COLLECTION = "legal_requests"
CONFIGURATION_COLLECTION = "configuration"

STORE_MAX_RETRIES = int(os.environ.get("STORE_MAX_RETRIES", "3"))


# =============================================================================
# WORKING HOURS
# =============================================================================

WORKING_HOURS_START = os.environ.get("WORKING_HOURS_START", "8")
WORKING_HOURS_END = os.environ.get("WORKING_HOURS_END", "17")
WORKING_DAYS = os.environ.get("WORKING_DAYS", "1,2,3,4,5")  # ISO weekdays, Monday = 1
WORKING_HOURS_TIMEZONE = os.environ.get("WORKING_HOURS_TIMEZONE", "America/Los_Angeles")

CONFIG_CACHE_TTL_SECONDS = int(os.environ.get("CONFIG_CACHE_TTL_SECONDS", "300"))


# =============================================================================
# PERMISSION SERVICE (AZURE FUNCTIONS VIA APIM)
# =============================================================================

AZURE_FUNCTIONS_ENABLED = os.environ.get("AZURE_FUNCTIONS_ENABLED", "false").lower() == "true"
APIM_BASE_URL = os.environ.get("APIM_BASE_URL", "")
APIM_API_CLIENT_ID = os.environ.get("APIM_API_CLIENT_ID", "")
SITE_URL = os.environ.get("SITE_URL", "")
PERMISSION_REQUEST_TIMEOUT = float(os.environ.get("PERMISSION_REQUEST_TIMEOUT", "30"))
REQUESTS_LIST_TITLE = "Requests"
