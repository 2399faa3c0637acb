from __future__ import annotations

import logging

LOGGER = logging.getLogger("dashlink.link")
APP_VERSION = "0.1.0"

DEFAULT_GRAPHQL_PATH = "/graphql"
DEFAULT_BATCH_INTERVAL_MS = 3
DEFAULT_BATCH_MAX = 10
# Refresh when the access token expires within this window.
DEFAULT_EXPIRY_THRESHOLD_SECONDS = 13 * 60
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TOKEN_STORE_PATH = ".tokens.json"
