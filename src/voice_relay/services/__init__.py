"""Session state, stream drivers and speech synthesis services."""
