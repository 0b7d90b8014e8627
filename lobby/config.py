"""Environment-driven settings for the lobby service."""

from os import getenv

DEBUG = getenv("APP_DEBUG", "false").lower() == "true"

# Default DATABASE_URL is for local dev only (Docker Compose)
DATABASE_URL = getenv(
    "DATABASE_URL",
    "postgresql+asyncpg://postgres:postgres@db:5432/lobby"
)

# Capacity given to rooms created by the lobby (the table default is 4)
MAX_PLAYERS = int(getenv("LOBBY_MAX_PLAYERS", "5"))
MIN_PLAYERS_TO_START = int(getenv("LOBBY_MIN_PLAYERS_TO_START", "2"))
CODE_LENGTH = int(getenv("LOBBY_CODE_LENGTH", "6"))

# Seconds before a store call is abandoned and reported as failed
STORE_TIMEOUT = float(getenv("LOBBY_STORE_TIMEOUT", "10"))
