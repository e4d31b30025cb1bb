"""
Profile Analyzer

Infers a StudentProfile (name and interests) from what the student has written
across their sessions, so replies can use analogies from their own world.
"""

import logging
from typing import List

from science_buddy.generation_gateway import GenerationGateway, GenerationRequest
from science_buddy.session_state import MessageRole, Session, StudentProfile
from science_buddy.structured_outputs import ProfileInsight

logger = logging.getLogger(__name__)

DEFAULT_INTERESTS = "General Science"
RECENT_MESSAGE_LIMIT = 20

ANALYZER_SYSTEM_PROMPT = "You are an analyzer bot. Return JSON only."

ANALYZER_PROMPT = """Analyze these chat messages from a Class 8 student to build a personalization profile.

GOAL: Return a concise "interests" string that describes:
1. Their specific hobbies (e.g. "Loves Minecraft", "Plays Football").
2. Their learning struggle or style (e.g. "Hates formulas", "Needs visual examples").
3. Their name, if mentioned.

Respond ONLY with a JSON object in this format:
{{ "name": "Rohan", "interests": "Loves cricket analogies, struggles with chemical equations, visual learner." }}

Messages:
{messages}"""


def default_profile() -> StudentProfile:
    return StudentProfile(name=None, interests=DEFAULT_INTERESTS)


class ProfileAnalyzer:
    """Builds a StudentProfile from a user's recent messages."""

    def __init__(self, gateway: GenerationGateway):
        self.gateway = gateway

    @staticmethod
    def recent_user_messages(sessions: List[Session], limit: int = RECENT_MESSAGE_LIMIT) -> List[str]:
        texts = [
            message.text
            for session in sessions
            for message in session.messages
            if message.role == MessageRole.USER and message.text.strip()
        ]
        return texts[-limit:]

    async def analyze(self, sessions: List[Session]) -> StudentProfile:
        """
        Infer the student's profile.

        Args:
            sessions: The student's sessions, in the order they were loaded

        Returns:
            Inferred profile, or the default profile when there is nothing to
            analyze or no model produced a usable answer
        """
        texts = self.recent_user_messages(sessions)
        if not texts:
            logger.info("🎓 [ProfileAnalyzer] Skipping - no student messages")
            return default_profile()

        logger.info(f"🎓 [ProfileAnalyzer] Analyzing {len(texts)} messages")
        result = await self.gateway.generate(GenerationRequest(
            messages=[
                {"role": "system", "content": ANALYZER_SYSTEM_PROMPT},
                {"role": "user", "content": ANALYZER_PROMPT.format(messages="\n".join(texts))},
            ],
            structured=True,
            schema=ProfileInsight,
            purpose="profile analysis",
        ))
        if not result.ok:
            logger.warning("⚠️ [ProfileAnalyzer] No usable analysis, using default profile")
            return default_profile()

        insight: ProfileInsight = result.data
        profile = StudentProfile(
            name=(insight.name or "").strip() or None,
            interests=insight.interests.strip() or DEFAULT_INTERESTS,
        )
        logger.info(f"✅ [ProfileAnalyzer] Profile ready (name={'yes' if profile.name else 'no'})")
        return profile
