"""
Central constants for the ModHub application.
"""
from __future__ import annotations

USER_ROLES = ("admin", "user", "supporter", "banned", "suspended")
ASSIGNABLE_ROLES = ("admin", "user", "supporter")

# Session lifetime and sliding-renewal threshold
SESSION_LIFETIME_DAYS = 30
SESSION_RENEW_WITHIN_DAYS = 15

# Proxied upload limits
MAX_DIRECT_UPLOAD_BYTES = 100 * 1024 * 1024
MAX_MOD_FILE_BYTES = 500 * 1024 * 1024
MOD_FILE_EXTENSIONS = (".zip", ".rar", ".7z", ".tar", ".gz")
IMAGE_CONTENT_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})

UPLOAD_FILE_TYPES = ("image", "mod")

# system_settings defaults (sizes in MB)
DEFAULT_MAX_MOD_FILE_SIZE = 100
DEFAULT_MAX_IMAGES_PER_MOD = 10
DEFAULT_MAX_TOTAL_IMAGE_SIZE = 50

DEFAULT_CATEGORY_COLOR = "#6B7280"
DEFAULT_PROFILE_PICTURE = "https://placehold.co/30x30/png"

MOD_SORT_KEYS = ("downloads", "rating", "created", "updated", "likes")
