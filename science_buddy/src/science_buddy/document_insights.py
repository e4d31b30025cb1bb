"""
Document Insights

Study aids generated from a document session's source text: a summary, a
concept map and a multiple-choice quiz. Each reads only a bounded prefix of the
document.
"""

import logging
from typing import List

from science_buddy.config import EngineConfig
from science_buddy.generation_gateway import GenerationGateway, GenerationRequest
from science_buddy.structured_outputs import ConceptMap, ConceptNode, QuizQuestion, QuizSet

logger = logging.getLogger(__name__)

CONCEPT_MAP_CHARS = 4000

SUMMARY_PROMPT = """Summarize the following document for a Class {grade} student.
Use short paragraphs and **bold** the key terms. Keep it under 250 words.

TEXT: "{text}\""""

CONCEPT_MAP_PROMPT = """Analyze this text and create a concept map structure JSON.
Rules:
1. Root node is the main topic.
2. Children are key sub-concepts (4-6 of them).
3. Each description is short (15 words max).
4. Keep to the NCERT Class {grade} level.
Output STRICT JSON: {{ "root": {{ "label": "Main Topic", "description": "..." }}, "children": [ {{ "label": "Subconcept", "description": "..." }} ] }}

TEXT: "{text}\""""

QUIZ_PROMPT = """Generate {count} multiple choice questions for a Class {grade} student based strictly on this text.
Return ONLY a JSON object with this structure:
{{
    "questions": [
        {{
            "question": "...",
            "options": ["A", "B", "C", "D"],
            "correctAnswer": "The correct option text (must match one of the options exactly)",
            "explanation": "Short explanation of why."
        }}
    ]
}}

TEXT: "{text}\""""


def empty_concept_map() -> ConceptMap:
    return ConceptMap(root=ConceptNode(label="", description=""), children=[])


class DocumentInsights:
    """Generates summary, concept map and quiz for a document."""

    def __init__(self, gateway: GenerationGateway, config: EngineConfig, grade: int = 8):
        self.gateway = gateway
        self.config = config
        self.grade = grade

    def _excerpt(self, text: str, limit: int) -> str:
        return (text or "")[:limit]

    async def summarize(self, source_text: str) -> str:
        """Plain-text summary, or an empty string when no model answered."""
        prompt = SUMMARY_PROMPT.format(
            grade=self.grade,
            text=self._excerpt(source_text, self.config.document_excerpt_chars)
        )
        result = await self.gateway.generate(GenerationRequest(
            messages=[{"role": "user", "content": prompt}],
            temperature=self.config.document_temperature,
            purpose="document summary",
        ))
        return result.text if result.ok else ""

    async def concept_map(self, source_text: str) -> ConceptMap:
        prompt = CONCEPT_MAP_PROMPT.format(
            grade=self.grade,
            text=self._excerpt(source_text, CONCEPT_MAP_CHARS)
        )
        result = await self.gateway.generate(GenerationRequest(
            messages=[{"role": "user", "content": prompt}],
            structured=True,
            schema=ConceptMap,
            purpose="concept map",
        ))
        if not result.ok:
            logger.warning("⚠️ [DocumentInsights] Concept map unavailable")
            return empty_concept_map()
        return result.data

    async def quiz(self, source_text: str, count: int = 5) -> List[QuizQuestion]:
        """
        Multiple-choice questions about the document.

        Questions whose answer is not one of their options are dropped.
        """
        prompt = QUIZ_PROMPT.format(
            count=count,
            grade=self.grade,
            text=self._excerpt(source_text, self.config.document_excerpt_chars)
        )
        result = await self.gateway.generate(GenerationRequest(
            messages=[{"role": "user", "content": prompt}],
            structured=True,
            schema=QuizSet,
            purpose="document quiz",
        ))
        if not result.ok:
            logger.warning("⚠️ [DocumentInsights] Quiz unavailable")
            return []

        questions = [q for q in result.data.questions if q.correctAnswer in q.options]
        dropped = len(result.data.questions) - len(questions)
        if dropped:
            logger.debug(f"📚 [DocumentInsights] Dropped {dropped} questions with unmatched answers")
        return questions[:count]
