"""Session state, profile storage and the request lifecycle."""
