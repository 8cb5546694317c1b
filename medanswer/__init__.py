"""MedAnswer: grounded answers over patient clinical records."""

__version__ = "0.1.0"
