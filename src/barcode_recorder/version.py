"""Application version information."""

APP_VERSION = "0.1.0"
