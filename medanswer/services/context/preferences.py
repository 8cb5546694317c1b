"""Artifact-type preference tables keyed by query intent."""

from collections.abc import Mapping

from medanswer.services.context.query import QueryIntent

UNKNOWN_INTENT_PREFERENCE = 0.5


class TypePreferenceTable:
    """Per-intent artifact type weights with a required fallback.

    Every intent row must define a ``default`` weight and every weight must
    lie in [0, 1]; both are checked when the table is built.
    """

    DEFAULT_KEY = "default"

    def __init__(
        self,
        rows: Mapping[QueryIntent, Mapping[str, float]],
        unknown_intent: float = UNKNOWN_INTENT_PREFERENCE,
    ):
        validated: dict[QueryIntent, dict[str, float]] = {}
        for intent, row in rows.items():
            if self.DEFAULT_KEY not in row:
                raise ValueError(f"Preference row for {intent.value} has no default entry")
            for artifact_type, weight in row.items():
                if not 0.0 <= weight <= 1.0:
                    raise ValueError(
                        f"Preference {intent.value}/{artifact_type} out of range: {weight}"
                    )
            validated[intent] = dict(row)
        self._rows = validated
        self.unknown_intent = unknown_intent

    def lookup(self, artifact_type: str, intent: QueryIntent | str) -> float:
        try:
            intent = QueryIntent(intent)
        except ValueError:
            return self.unknown_intent
        row = self._rows.get(intent)
        if row is None:
            return self.unknown_intent
        return row.get(artifact_type, row[self.DEFAULT_KEY])

    def row(self, intent: QueryIntent) -> dict[str, float]:
        return dict(self._rows.get(intent, {}))


SCORER_TYPE_PREFERENCES = TypePreferenceTable(
    {
        QueryIntent.RETRIEVE_MEDICATIONS: {
            "medication_order": 1.0,
            "prescription": 1.0,
            "medication_list": 0.9,
            "progress_note": 0.5,
            "default": 0.3,
        },
        QueryIntent.RETRIEVE_CARE_PLANS: {
            "care_plan": 1.0,
            "treatment_plan": 1.0,
            "care_coordination": 0.9,
            "progress_note": 0.6,
            "default": 0.3,
        },
        QueryIntent.RETRIEVE_NOTES: {
            "progress_note": 1.0,
            "clinical_note": 1.0,
            "encounter": 0.9,
            "visit_note": 0.9,
            "default": 0.4,
        },
        QueryIntent.SUMMARY: {"default": 0.8},
        QueryIntent.COMPARISON: {"default": 0.8},
        QueryIntent.RETRIEVE_ALL: {"default": 0.8},
        QueryIntent.UNKNOWN: {"default": 0.5},
    }
)

RERANK_TYPE_BONUSES = TypePreferenceTable(
    {
        QueryIntent.RETRIEVE_MEDICATIONS: {
            "medication_order": 1.0,
            "prescription": 1.0,
            "medication_list": 0.8,
            "default": 0.3,
        },
        QueryIntent.RETRIEVE_CARE_PLANS: {
            "care_plan": 1.0,
            "treatment_plan": 1.0,
            "care_coordination": 0.8,
            "default": 0.3,
        },
        QueryIntent.RETRIEVE_NOTES: {
            "progress_note": 1.0,
            "clinical_note": 1.0,
            "encounter": 0.8,
            "visit_note": 0.8,
            "default": 0.4,
        },
        QueryIntent.SUMMARY: {"default": 0.7},
        QueryIntent.COMPARISON: {"default": 0.7},
        QueryIntent.RETRIEVE_ALL: {"default": 0.7},
        QueryIntent.UNKNOWN: {"default": 0.5},
    }
)
