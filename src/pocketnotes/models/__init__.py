"""Domain and table models for PocketNotes."""
