"""Verification of numeric claims in generated text against extraction counts.

Catches summaries such as "the patient takes 5 medications" when only three
medication extractions exist, and rewrites the offending claims.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Literal

from medanswer.config import settings
from medanswer.services.llm.extraction import Extraction

logger = logging.getLogger("medanswer")

Severity = Literal["critical", "warning", "info"]

NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}

ENTITY_ALIASES = {
    "med": "medication",
    "meds": "medication",
    "drug": "medication",
    "drugs": "medication",
    "diagnosis": "condition",
    "diagnoses": "condition",
    "lab": "test",
    "labs": "test",
    "lab test": "test",
    "lab tests": "test",
    "lab result": "test",
    "lab results": "test",
    "measurement": "test",
    "measurements": "test",
    "lab_result": "test",
    "lab_results": "test",
}

_ENTITY = (
    r"(?P<entity>medications?|meds?|drugs?|conditions?|diagnos[ie]s|procedures?|treatments?"
    r"|labs?(?:\s+(?:tests?|results?))?|tests?)"
)
_NUMBER_WORD = "|".join(NUMBER_WORDS)

CLAIM_PATTERN = re.compile(
    r"\b(?:"
    r"(?P<range_min>\d+)\s*(?:-|to)\s*(?P<range_max>\d+)"
    r"|(?P<approx>approximately|about|around|roughly|over)\s+(?P<approx_n>\d+)"
    r"|(?P<plus>\d+)\+"
    r"|(?P<vague>several|multiple|many|some|few)"
    rf"|(?P<exact>\d+|{_NUMBER_WORD})"
    r")\s+" + _ENTITY + r"\b",
    re.IGNORECASE,
)


def normalize_entity_type(word: str) -> str:
    """Map a claim or extraction type word to its canonical entity type."""
    normalized = " ".join(word.lower().split())
    if normalized in ENTITY_ALIASES:
        return ENTITY_ALIASES[normalized]
    if normalized.endswith("s") and normalized[:-1] in {
        "medication",
        "condition",
        "procedure",
        "treatment",
        "test",
    }:
        return normalized[:-1]
    return normalized


@dataclass(frozen=True)
class CountClaim:
    """A count claim found in text with the range of counts it allows."""

    text: str
    entity_type: str
    minimum: int
    maximum: int | None
    start: int
    end: int
    approximate: bool = False
    nominal: int | None = None

    def allows(self, count: int) -> bool:
        if count < self.minimum:
            return False
        return self.maximum is None or count <= self.maximum


@dataclass(frozen=True)
class CountDiscrepancy:
    entity_type: str
    extracted_count: int
    claimed_count: str
    severity: Severity
    explanation: str


@dataclass
class CountVerificationResult:
    passed: bool
    discrepancies: list[CountDiscrepancy] = field(default_factory=list)
    extraction_counts: dict[str, int] = field(default_factory=dict)
    corrected_text: str | None = None
    warnings: list[str] = field(default_factory=list)


def _claim_from_match(match: re.Match) -> CountClaim:
    entity_type = normalize_entity_type(match.group("entity"))
    common = {
        "text": match.group(0),
        "entity_type": entity_type,
        "start": match.start(),
        "end": match.end(),
    }
    if match.group("range_min"):
        low, high = int(match.group("range_min")), int(match.group("range_max"))
        return CountClaim(minimum=min(low, high), maximum=max(low, high), **common)
    if match.group("approx"):
        number = int(match.group("approx_n"))
        if match.group("approx").lower() == "over":
            return CountClaim(minimum=number + 1, maximum=None, **common)
        return CountClaim(
            minimum=number - 1,
            maximum=number + 1,
            approximate=True,
            nominal=number,
            **common,
        )
    if match.group("plus"):
        return CountClaim(minimum=int(match.group("plus")), maximum=None, **common)
    if match.group("vague"):
        word = match.group("vague").lower()
        minimum = 2 if word in {"several", "multiple", "many"} else 1
        return CountClaim(minimum=minimum, maximum=None, **common)
    exact = match.group("exact").lower()
    number = NUMBER_WORDS[exact] if exact in NUMBER_WORDS else int(exact)
    return CountClaim(minimum=number, maximum=number, **common)


class ExtractionCountVerifier:
    """Compares count claims in text with the number of extractions per type."""

    def __init__(
        self,
        critical_threshold: int | None = None,
        warning_threshold: int | None = None,
    ):
        self.critical_threshold = (
            settings.count_critical_threshold if critical_threshold is None else critical_threshold
        )
        self.warning_threshold = (
            settings.count_warning_threshold if warning_threshold is None else warning_threshold
        )

    @staticmethod
    def count_by_type(extractions: list[Extraction]) -> dict[str, int]:
        return dict(Counter(normalize_entity_type(e.type) for e in extractions))

    @staticmethod
    def parse_claims(text: str) -> list[CountClaim]:
        return [_claim_from_match(m) for m in CLAIM_PATTERN.finditer(text or "")]

    def severity_for(self, extracted: int, claim: CountClaim) -> Severity:
        upper = claim.maximum if claim.maximum is not None else extracted
        diff = max(extracted - upper, claim.minimum - extracted)
        if diff >= self.critical_threshold:
            return "critical"
        if diff >= self.warning_threshold:
            return "warning"
        return "info"

    def find_discrepancies(
        self, extraction_counts: dict[str, int], claims: list[CountClaim]
    ) -> list[CountDiscrepancy]:
        discrepancies = []
        for claim in claims:
            extracted = extraction_counts.get(claim.entity_type, 0)
            plural = "" if extracted == 1 else "s"
            if claim.allows(extracted):
                if claim.approximate and extracted != claim.nominal:
                    discrepancies.append(
                        CountDiscrepancy(
                            entity_type=claim.entity_type,
                            extracted_count=extracted,
                            claimed_count=claim.text,
                            severity="info",
                            explanation=(
                                f'Summary claims "{claim.text}" and {extracted} '
                                f"{claim.entity_type}{plural} were extracted from sources"
                            ),
                        )
                    )
                continue
            discrepancies.append(
                CountDiscrepancy(
                    entity_type=claim.entity_type,
                    extracted_count=extracted,
                    claimed_count=claim.text,
                    severity=self.severity_for(extracted, claim),
                    explanation=(
                        f'Summary claims "{claim.text}" but {extracted} '
                        f"{claim.entity_type}{plural} were extracted from sources"
                    ),
                )
            )
        return discrepancies

    @staticmethod
    def format_count(entity_type: str, count: int) -> str:
        if count == 0:
            return f"no {entity_type}s"
        return f"{count} {entity_type}{'' if count == 1 else 's'}"

    def auto_correct(self, text: str, extraction_counts: dict[str, int]) -> str:
        """Replace every claim whose range excludes the extracted count."""

        def _replace(match: re.Match) -> str:
            claim = _claim_from_match(match)
            count = extraction_counts.get(claim.entity_type, 0)
            if claim.allows(count):
                return match.group(0)
            return self.format_count(claim.entity_type, count)

        return CLAIM_PATTERN.sub(_replace, text)

    def verify(self, extractions: list[Extraction], text: str) -> CountVerificationResult:
        """Check ``text`` against the extraction counts and correct it if needed."""
        counts = self.count_by_type(extractions)
        claims = self.parse_claims(text)
        discrepancies = self.find_discrepancies(counts, claims)
        critical = [d for d in discrepancies if d.severity == "critical"]

        result = CountVerificationResult(
            passed=not critical,
            discrepancies=discrepancies,
            extraction_counts=counts,
        )
        if not critical:
            return result

        for discrepancy in discrepancies:
            logger.warning(
                "Count verification [%s]: %s", discrepancy.severity, discrepancy.explanation
            )
        result.warnings = [
            f"Count mismatch: {d.explanation} - Auto-corrected to match sources."
            for d in critical
        ]
        result.corrected_text = self.auto_correct(text, counts)
        return result
