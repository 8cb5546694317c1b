"""Deduplication of medication extractions that name the same drug.

"Atorvastatin 10mg" and "Atorvastatin Calcium" normalize to the same name,
so only the higher-confidence extraction is kept.
"""

import logging
import re
from dataclasses import dataclass

from medanswer.services.llm.extraction import Extraction

logger = logging.getLogger("medanswer")

SALT_FORMS = (
    "extended release",
    "sustained release",
    "calcium",
    "sodium",
    "potassium",
    "magnesium",
    "aluminum",
    "iron",
    "zinc",
    "hydrochloride",
    "hcl",
    "sulfate",
    "chloride",
    "phosphate",
    "acetate",
    "bromide",
    "citrate",
    "fumarate",
    "maleate",
    "mesylate",
    "tartrate",
    "succinate",
    "gluconate",
    "lactate",
    "stearate",
    "monohydrate",
    "dihydrate",
    "trihydrate",
    "anhydrous",
    "hydrous",
    "er",
    "xr",
    "sr",
)

DOSAGE_FORMS = (
    "tablet",
    "capsule",
    "oral",
    "injection",
    "solution",
    "suspension",
    "cream",
    "ointment",
    "gel",
    "patch",
    "inhaler",
    "spray",
    "drops",
    "syrup",
    "powder",
    "granules",
)

_DOSAGE = re.compile(r"\s*\d+\.?\d*\s*(?:mg|mcg|g|ml|l|iu|units?)\b\s*", re.IGNORECASE)
_SEPARATORS = re.compile(r"[-_,;:()\[\]{}]")
_WHITESPACE = re.compile(r"\s+")
_FORM_WORDS = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in SALT_FORMS + DOSAGE_FORMS) + r")\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class DedupStats:
    total: int
    unique_normalized: int
    duplicates_detected: int


def _normalize_once(name: str) -> str:
    text = _SEPARATORS.sub(" ", name.lower())
    text = _DOSAGE.sub(" ", text)
    text = _FORM_WORDS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


class MedicationDeduplicator:
    """Groups medication extractions by normalized drug name."""

    @staticmethod
    def normalize(name: str) -> str:
        """Strip dosage, salt and dosage-form words from a medication name.

        Applied until the name stops changing, so normalizing twice gives
        the same result as normalizing once.
        """
        current = (name or "").strip()
        while True:
            normalized = _normalize_once(current)
            if normalized == current:
                return normalized
            current = normalized

    def are_same_medication(self, first: str, second: str) -> bool:
        return self.normalize(first) == self.normalize(second)

    def deduplicate(self, extractions: list[Extraction]) -> list[Extraction]:
        """Keep the most confident extraction per normalized medication.

        Medications come first in the result, followed by all other
        extractions in their original order. Ties keep the earliest one.
        """
        medications = [e for e in extractions if e.type == "medication"]
        others = [e for e in extractions if e.type != "medication"]
        if not medications:
            return list(extractions)

        groups: dict[str, list[Extraction]] = {}
        for extraction in medications:
            groups.setdefault(self.normalize(extraction.name or ""), []).append(extraction)

        kept = []
        removed = 0
        for normalized, group in groups.items():
            best = group[0]
            for candidate in group[1:]:
                if candidate.confidence > best.confidence:
                    best = candidate
            kept.append(best)
            if len(group) > 1:
                removed += len(group) - 1
                logger.info(
                    "Duplicate medication %r: kept %r (confidence %.2f), removed %d",
                    normalized,
                    best.name,
                    best.confidence,
                    len(group) - 1,
                )

        if removed:
            logger.info(
                "Medication deduplication: %d -> %d medications", len(medications), len(kept)
            )
        return kept + others

    def get_stats(self, extractions: list[Extraction]) -> DedupStats:
        names = [self.normalize(e.name or "") for e in extractions if e.type == "medication"]
        unique = len(set(names))
        return DedupStats(
            total=len(names),
            unique_normalized=unique,
            duplicates_detected=len(names) - unique,
        )
