"""Verification of generated answers against their sources."""

from medanswer.services.verification.citation_validator import CitationValidator
from medanswer.services.verification.count_verifier import ExtractionCountVerifier
from medanswer.services.verification.medication_dedup import MedicationDeduplicator

__all__ = ["CitationValidator", "ExtractionCountVerifier", "MedicationDeduplicator"]
