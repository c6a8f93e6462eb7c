"""Static configuration for vmidentity.

All user-editable settings (marker location, contact store, resolver policy,
matching, logging) live in a single JSON file for quick edits without
touching Python. Without a config file the built-in defaults below apply,
so an installed console script runs out of the box.
"""

import json
import os

from dotenv import load_dotenv

# .env may point at another config file or database.
load_dotenv()

# config.json sits at the project root unless VMIDENTITY_CONFIG says otherwise.
_DEFAULT_CONFIG_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "config.json"))
_EXPLICIT_CONFIG_PATH = os.getenv("VMIDENTITY_CONFIG")
CONFIG_PATH = os.path.abspath(_EXPLICIT_CONFIG_PATH or _DEFAULT_CONFIG_PATH)

# Identity marker of the voicemail contact when config.json does not set one.
DEFAULT_IDENTITY_MARKER = "a6f1c3e2-5b7d-4e08-9c1f-7d2b8e4a0c55"


def _load_json_config(path: str, required: bool) -> dict:
    """Load config.json with a flat, user-friendly schema.

    A missing file is an error only when it was asked for explicitly;
    otherwise every setting falls back to its default.
    """

    if not os.path.exists(path):
        if required:
            raise FileNotFoundError(f"Config file not found: {path}")
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config(CONFIG_PATH, required=bool(_EXPLICIT_CONFIG_PATH))

# Relative paths (database, log file) are anchored next to the config file,
# or at the working directory when running on defaults.
PROJECT_ROOT = os.path.dirname(CONFIG_PATH) if os.path.exists(CONFIG_PATH) else os.getcwd()


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Marker file whose presence means a voicemail identity was provisioned.
_marker = _CONFIG.get("marker", {})
MARKER_DIRECTORY = _marker.get("directory", "/dev/shm/contacts")
MARKER_FILE_NAME = _marker.get("file_name", "vmid")

# Contact store location and the tag carried by the voicemail contact.
_contacts = _CONFIG.get("contacts", {})
DB_PATH = _resolve_path(os.getenv("VMIDENTITY_DB_PATH") or _contacts.get("db_path", "contacts.db"))
IDENTITY_MARKER = _contacts.get("identity_marker", DEFAULT_IDENTITY_MARKER)

# Resolver policy:
# - SETTLE_ON_RESOLVE: ignore marker events once resolved, until clear()
# - CLEAR_ON_MARKER_REMOVED: drop the identity when the marker file disappears
_resolver = _CONFIG.get("resolver", {})
SETTLE_ON_RESOLVE = bool(_resolver.get("settle_on_resolve", False))
CLEAR_ON_MARKER_REMOVED = bool(_resolver.get("clear_on_marker_removed", False))

# Phone number comparison used by is_voicemail_number.
_matching = _CONFIG.get("matching", {})
DEFAULT_REGION = _matching.get("default_region")
SUFFIX_LENGTH = int(_matching.get("suffix_length", 7))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
