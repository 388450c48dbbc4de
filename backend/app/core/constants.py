"""Application-wide constants for the CleanOps backend."""

API_TITLE = "CleanOps API"
API_DESCRIPTION = "Booking lifecycle and payment hold scheduling for cleaning services"
API_VERSION = "1.0.0"

# Local frontends allowed by CORS outside production
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
