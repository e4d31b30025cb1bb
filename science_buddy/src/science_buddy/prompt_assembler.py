"""
Prompt Assembler

Builds the provider message list for one turn:

    [system instruction, (document excerpt), ...history window, new user message]

The system instruction carries the persona rules, the personalization directive
and the rendered ContextSnapshot. Pure: no I/O, no state.
"""

from enum import Enum
from typing import Dict, List, Optional

from science_buddy.config import EngineConfig
from science_buddy.context_aggregator import ContextSnapshot
from science_buddy.session_state import Message, SessionModality


class Persona(str, Enum):
    TUTOR = "tutor"
    VOICE = "voice"
    DOCUMENT = "document"

    @classmethod
    def for_modality(cls, modality: SessionModality) -> "Persona":
        return {
            SessionModality.TEXT: cls.TUTOR,
            SessionModality.VOICE: cls.VOICE,
            SessionModality.DOCUMENT: cls.DOCUMENT,
        }[modality]


TUTOR_PROMPT = """You are "Science Buddy", a world-class AI tutor for Class 8 Science students.

MEMORY RULES:
1. The message history provided is the conversation so far. Treat it as the truth.
2. If the student says "explain that again" or "what did we just talk about?", look at the previous messages.
3. Keep a consistent thread. If we were discussing cells and the student asks "How big is it?", "it" is the cell.

PERSONALITY:
- Enthusiastic and encouraging. Emojis are welcome 🌟 🚀 🧬.
- Socratic: ask questions that check understanding instead of lecturing.
- Relate concepts to the student's interests.
- Stay within the Class 8 curriculum.

RESPONSE GUIDELINES:
1. Use **bold** for vocabulary, *italics* for emphasis and bullet points for lists.
2. Keep responses under 200 words unless asked for a deep dive.
3. Encourage safe experiment practices."""

VOICE_PROMPT = """You are "Science Buddy", speaking directly to a Class 8 student on a voice call.
Have a natural, friendly conversation about science.

MEMORY RULES:
1. This is one continuous conversation. Answer follow-ups like "Why?" from the previous turn.
2. Do not repeat introductions once the conversation is under way.

VOICE RULES:
1. The output is read aloud. No emojis, asterisks, bold or markdown of any kind.
2. Speak like a friend. Keep answers to two or three sentences.
3. End with a short question to keep the conversation going.
4. Use the student's name and interests often."""

DOCUMENT_PROMPT = """You are a helpful research assistant analyzing a specific document for a Class 8 student.
Answer the student's questions based strictly on the document context provided and keep it simple.
If the document does not cover the question, say so."""

PERSONA_PROMPTS: Dict[Persona, str] = {
    Persona.TUTOR: TUTOR_PROMPT,
    Persona.VOICE: VOICE_PROMPT,
    Persona.DOCUMENT: DOCUMENT_PROMPT,
}


def render_context_block(snapshot: ContextSnapshot) -> str:
    """Render a ContextSnapshot as the STUDENT CONTEXT section of the system prompt."""
    lines = ["STUDENT CONTEXT:"]
    if snapshot.student_name:
        lines.append(f"- Name: {snapshot.student_name}")
    lines.append(f"- Leaderboard rank: {'#' + str(snapshot.rank) if snapshot.rank is not None else 'unknown'}")
    if snapshot.total_score is not None:
        lines.append(f"- Total XP: {snapshot.total_score}")
    if snapshot.quiz_results:
        scores = ", ".join(
            f"{topic} ({score})" if score is not None else topic
            for topic, score in snapshot.quiz_results
        )
        lines.append(f"- Recent quiz results: {scores}")
    if snapshot.research_topics:
        lines.append(f"- Researching: {', '.join(snapshot.research_topics)}")
    if snapshot.saved_topics:
        lines.append(f"- Saved concept maps: {', '.join(snapshot.saved_topics)}")
    if snapshot.contribution_count is not None:
        lines.append(f"- Community notes shared: {snapshot.contribution_count}")
    return "\n".join(lines)


class PromptAssembler:
    """Turns persona, context and history into the provider message list."""

    def __init__(self, config: EngineConfig):
        self.config = config

    def system_instruction(self, persona: Persona, snapshot: ContextSnapshot) -> str:
        parts = [PERSONA_PROMPTS[persona]]
        if snapshot.directive:
            parts.append(f"INSTRUCTION: {snapshot.directive}")
        parts.append(render_context_block(snapshot))
        return "\n\n".join(parts)

    def history_window(self, history: List[Message], new_message: Message) -> List[Message]:
        """Last ``history_window`` prior messages, oldest first, without the in-flight one."""
        prior = [m for m in history if m.id != new_message.id]
        window = self.config.history_window
        if window <= 0:
            return []
        return prior[-window:]

    def assemble(
        self,
        persona: Persona,
        snapshot: ContextSnapshot,
        history: List[Message],
        new_message: Message,
        document_text: Optional[str] = None
    ) -> List[Dict[str, str]]:
        """
        Build the ordered message list for the provider.

        Args:
            persona: Selects the system instruction
            snapshot: Student context for this turn
            history: Session messages, may already contain ``new_message``
            new_message: The user message being answered
            document_text: Source text for the document persona

        Returns:
            Messages as ``{"role", "content"}`` dicts
        """
        messages = [{"role": "system", "content": self.system_instruction(persona, snapshot)}]

        if persona == Persona.DOCUMENT and document_text:
            excerpt = document_text[:self.config.document_excerpt_chars]
            messages.append({"role": "user", "content": f"DOCUMENT CONTEXT:\n{excerpt}"})

        messages.extend(m.to_provider_message() for m in self.history_window(history, new_message))
        messages.append(new_message.to_provider_message())
        return messages
