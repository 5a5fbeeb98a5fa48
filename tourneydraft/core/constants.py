"""Global constants for the tourneydraft application."""

# Firestore collections
DRAFTS_COLLECTION = "tournament_drafts"
AUDIT_LOGS_COLLECTION = "audit_logs"
USERS_COLLECTION = "users"

# Local cache
LOCAL_DRAFTS_KEY = "tournament-drafts"

# Draft statuses
STATUS_DRAFT = "draft"
STATUS_COMPLETED = "completed"

UNTITLED_DRAFT_NAME = "Untitled Tournament"

# Key written into a completed draft's document
TOURNAMENT_REFERENCE_FIELD = "tournamentId"

# Storage tiers
STORAGE_REMOTE = "remote"
STORAGE_LOCAL = "local"
STORAGE_NONE = "none"

# Autosave
DEFAULT_DEBOUNCE_SECONDS = 15.0
DEFAULT_CHECKPOINTS = ("basicInfo", "pairingMethod", "playerRegistration")
