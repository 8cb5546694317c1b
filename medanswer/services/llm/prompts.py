"""Prompt construction for the extraction and summarization passes."""

import json
from dataclasses import dataclass

from medanswer.services.context.chunks import RetrievalCandidate
from medanswer.services.context.query import StructuredQuery
from medanswer.services.llm.extraction import EXTRACTION_TYPES, Extraction

_TYPE_CHOICES = " | ".join(f'"{name}"' for name in EXTRACTION_TYPES)

EXTRACTION_SYSTEM_PROMPT = """You are a medical information extraction assistant.

Extract structured facts from the provided medical record chunks that answer the query.

Rules:
1. Only extract information explicitly stated in the chunks.
2. Never infer or add information that is not present.
3. Return an empty "extractions" array when nothing relevant is found.
4. Every extraction needs char_offsets locating the quote inside its chunk.
5. Be precise with dates, medication names, dosages and units.
6. Return valid JSON only.

Output format:
{
  "extractions": [
    {
      "type": """ + _TYPE_CHOICES + """,
      "content": { ... extracted fields ... },
      "provenance": {
        "artifact_id": "...",
        "chunk_id": "...",
        "char_offsets": [start, end],
        "supporting_text": "exact quote from the chunk",
        "confidence": 0.0-1.0
      }
    }
  ]
}

Provenance is a single object, never an array. When the same fact appears in
several chunks, emit one extraction per chunk. Supporting text must be copied
verbatim from the chunk.

Medications: extract name, dosage, frequency, route (how it is taken) and
indication (why it was prescribed, null when not stated). Never report a route
as an indication.

Confidence: 0.9-1.0 explicit statement with indication, 0.7-0.9 clear with
context, 0.5-0.7 some context missing, below 0.5 unclear or partial."""

SUMMARIZATION_SYSTEM_PROMPT = """You are a medical summarization assistant.

Summarize the provided extractions in clear, professional language.

Rules:
1. Only summarize the provided extractions. Never add new information.
2. Do not mention artifact IDs, chunk IDs or other technical metadata.
3. Keep the first line under 50 words and the remaining detail under 200 words.
4. Mention every extraction you were given. If you state a count, it must
   match the number of extractions of that type.
5. Never confuse a medication's route (oral tablet, IV) with its indication.
   When the indication is unknown, say so and refer to the source records.
6. If nothing relevant was extracted, say that no information was found.

Output format: respond with the answer text only, with no labels or prefixes.
Do not write "Short answer:", "Detailed summary:", "Answer:" or "Summary:".

Line 1: the concise answer.
(blank line)
Following lines: supporting detail."""

NO_EXTRACTIONS_INSTRUCTION = (
    "No relevant information was extracted from the provided chunks.\n\n"
    "Provide a brief response indicating that no information was found."
)


@dataclass(frozen=True)
class FormattedPrompt:
    system_prompt: str
    user_prompt: str
    total_chunks: int

    @property
    def estimated_tokens(self) -> int:
        return -(-(len(self.system_prompt) + len(self.user_prompt)) // 4)


class ExtractionPromptBuilder:
    """Builds prompts for both generation passes."""

    @staticmethod
    def format_candidates(candidates: list[RetrievalCandidate]) -> str:
        blocks = []
        for index, candidate in enumerate(candidates):
            chunk = candidate.chunk
            blocks.append(
                f"[Chunk {index + 1}]\n"
                f"Artifact ID: {chunk.artifact_id}\n"
                f"Chunk ID: {chunk.chunk_id}\n"
                f"Date: {chunk.metadata.date or 'Unknown'}\n"
                f"Type: {chunk.metadata.artifact_type or 'Unknown'}\n"
                f"Text: {chunk.content}\n"
            )
        return "\n\n".join(blocks)

    def build_extraction_prompt(
        self, candidates: list[RetrievalCandidate], query: StructuredQuery
    ) -> FormattedPrompt:
        user_prompt = (
            f'Query: "{query.original_query}"\n\n'
            f"Retrieved Chunks:\n{self.format_candidates(candidates)}\n\n"
            "Extract all relevant information to answer the query. "
            "Include precise provenance for each extraction."
        )
        return FormattedPrompt(
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            user_prompt=user_prompt,
            total_chunks=len(candidates),
        )

    @staticmethod
    def build_summarization_prompt(
        extractions: list[Extraction], query: StructuredQuery
    ) -> FormattedPrompt:
        """Build the Pass 2 prompt from extractions only; chunk text never appears."""
        header = f'Query: "{query.original_query}"\n\n'
        if not extractions:
            return FormattedPrompt(
                system_prompt=SUMMARIZATION_SYSTEM_PROMPT,
                user_prompt=header + NO_EXTRACTIONS_INSTRUCTION,
                total_chunks=0,
            )

        blocks = []
        for index, extraction in enumerate(extractions):
            evidence = extraction.provenance.supporting_text if extraction.provenance else ""
            blocks.append(
                f"Extraction {index + 1}:\n"
                f"Type: {extraction.type}\n"
                f"Content:\n{json.dumps(extraction.content, indent=2, default=str)}\n\n"
                f'Supporting Evidence: "{evidence}"\n'
            )

        user_prompt = (
            header
            + "Extracted Information:\n"
            + "\n\n".join(blocks)
            + "\n\nCreate a concise, natural-language summary that answers the query:\n"
            "1. First line: short answer (under 50 words)\n"
            "2. Remaining lines: detailed summary (under 200 words)\n\n"
            "Do not include artifact IDs or chunk IDs in your response."
        )
        return FormattedPrompt(
            system_prompt=SUMMARIZATION_SYSTEM_PROMPT,
            user_prompt=user_prompt,
            total_chunks=0,
        )
