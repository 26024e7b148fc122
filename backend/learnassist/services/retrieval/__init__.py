"""Best-effort retrieval of the user's own indexed material."""
