"""Service layer for MedAnswer."""
