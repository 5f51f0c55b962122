"""Service layer for PocketNotes."""
