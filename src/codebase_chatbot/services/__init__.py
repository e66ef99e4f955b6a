"""Service layer helpers (settings persistence)."""
