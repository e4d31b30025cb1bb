"""
Structured Output Schemas

Pydantic models that structured (JSON mode) provider responses are validated
against before they reach callers.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ProfileInsight(BaseModel):
    """Personalization profile inferred from a student's messages."""
    name: Optional[str] = None
    interests: str = "General Science"


class ConceptNode(BaseModel):
    label: str
    description: str = ""


class ConceptMap(BaseModel):
    """Root topic plus its key sub-concepts."""
    root: ConceptNode
    children: List[ConceptNode] = Field(default_factory=list)


class QuizQuestion(BaseModel):
    question: str
    options: List[str]
    correctAnswer: str
    explanation: str = ""


class QuizSet(BaseModel):
    questions: List[QuizQuestion] = Field(default_factory=list)
