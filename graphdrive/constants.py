from __future__ import annotations

import logging

LOGGER = logging.getLogger("graphdrive.storage")
AUTH_LOGGER = logging.getLogger("graphdrive.auth")

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
APP_FOLDER_PATH = "/me/drive/special/approot"

# Graph rejects upload session fragments that are not multiples of 320 KiB.
BLOCK_MULTIPLE_BYTES = 320 * 1024
DEFAULT_BLOCK_SIZE = 10 * BLOCK_MULTIPLE_BYTES
SIMPLE_UPLOAD_LIMIT_BYTES = 4 * 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 30

INVALID_AUTH_TOKEN_CODE = "InvalidAuthenticationToken"
CONFLICT_BEHAVIOR_PARAM = "@microsoft.graph.conflictBehavior"
