"""Domain models for Cruise Control operations."""
