"""
Mode registry: personas, personality configs, transition messages and
follow-up suggestions for each interaction mode.

The state machine has three states and no terminal state. All six directed
transitions (and self-transitions) are currently allowed; `is_valid_transition`
is the hook for tightening that policy later.
"""
from typing import Dict, List, Optional

from learnassist.models.domain import ExplanationStyle, Mode, PersonalityConfig, SkillLevel

_PERSONAS: Dict[Mode, str] = {
    Mode.TUTOR: (
        "You are a patient and encouraging tutor helping a student learn. "
        "Explain concepts in simple terms with real-world examples. "
        "Break down complex topics into manageable steps."
    ),
    Mode.INTERVIEWER: (
        "You are a professional interviewer conducting a mock interview. "
        "Ask relevant technical questions and provide constructive feedback. "
        "Simulate realistic interview scenarios."
    ),
    Mode.MENTOR: (
        "You are an experienced mentor providing career guidance. "
        "Offer practical advice, study strategies, and motivational support. "
        "Help the student develop effective learning habits."
    ),
}

_TUTOR_RESPONSE_STYLE: Dict[ExplanationStyle, str] = {
    ExplanationStyle.DETAILED: "comprehensive explanations with step-by-step breakdowns",
    ExplanationStyle.CONCISE: "clear and concise explanations",
    ExplanationStyle.VISUAL: "visual explanations with diagrams and examples",
}

_TUTOR_LANGUAGE_COMPLEXITY: Dict[SkillLevel, str] = {
    SkillLevel.BEGINNER: "simple, beginner-friendly language",
    SkillLevel.INTERMEDIATE: "moderate technical terminology",
    SkillLevel.ADVANCED: "advanced technical language",
}

_INTERVIEWER_CONFIG = PersonalityConfig(
    tone="professional, objective, and evaluative",
    response_style="structured interview questions with follow-ups",
    questioning_approach="progressive difficulty - start easy, increase complexity",
    feedback_style="honest and constructive with improvement suggestions",
    example_usage="scenario-based questions and case studies",
    language_complexity="professional interview language",
)

_MENTOR_CONFIG = PersonalityConfig(
    tone="friendly, experienced, and motivational",
    response_style="advice-oriented with practical strategies",
    questioning_approach="reflective questions to encourage self-discovery",
    feedback_style="supportive with actionable guidance",
    example_usage="career stories and learning path examples",
    language_complexity="conversational and relatable",
)

_GREETINGS: Dict[Mode, str] = {
    Mode.TUTOR: (
        "Hi {name}! I'm now in Tutor mode. I'll help you learn by explaining concepts "
        "step-by-step with examples. Feel free to ask questions and request clarification "
        "anytime. Let's learn together!"
    ),
    Mode.INTERVIEWER: (
        "Hello {name}! I'm now in Interview mode. I'll simulate a realistic interview "
        "experience, ask you technical questions and give feedback on your answers. "
        "Ready for some interview practice?"
    ),
    Mode.MENTOR: (
        "Hey {name}! I'm now in Mentor mode. I'm here to provide guidance on your learning "
        "journey. We can discuss study strategies, career goals, and how to overcome "
        "challenges. What's on your mind?"
    ),
}

_FOLLOW_UPS: Dict[Mode, List[str]] = {
    Mode.TUTOR: [
        "Can you explain this with an example?",
        "What are the key points I should remember?",
        "Can we practice this concept?",
    ],
    Mode.INTERVIEWER: [
        "Can you ask me another question?",
        "How can I improve my answer?",
        "What are common mistakes to avoid?",
    ],
    Mode.MENTOR: [
        "What should I focus on next?",
        "How can I improve my study strategy?",
        "What resources do you recommend?",
    ],
}

for _table in (_PERSONAS, _GREETINGS, _FOLLOW_UPS):
    _missing = set(Mode) - set(_table)
    if _missing:
        raise RuntimeError(f"mode registry incomplete, missing: {sorted(m.value for m in _missing)}")


class ModeRegistry:
    """Static lookups keyed by Mode."""

    def persona(self, mode: Mode) -> str:
        return _PERSONAS[mode]

    def config_for(
        self,
        mode: Mode,
        skill_level: SkillLevel = SkillLevel.INTERMEDIATE,
        style: ExplanationStyle = ExplanationStyle.DETAILED,
    ) -> PersonalityConfig:
        if mode is Mode.TUTOR:
            return PersonalityConfig(
                tone="patient, encouraging, and supportive",
                response_style=_TUTOR_RESPONSE_STYLE[style],
                questioning_approach="Socratic method - guide through questions",
                feedback_style="constructive and positive",
                example_usage="frequent real-world examples and analogies",
                language_complexity=_TUTOR_LANGUAGE_COMPLEXITY[skill_level],
            )
        if mode is Mode.INTERVIEWER:
            return _INTERVIEWER_CONFIG
        if mode is Mode.MENTOR:
            return _MENTOR_CONFIG
        raise ValueError(f"unsupported mode: {mode!r}")

    def transition_message(self, from_mode: Optional[Mode], to_mode: Mode, display_name: Optional[str] = None) -> str:
        name = display_name or "there"
        if from_mode == to_mode:
            return f"You are already in {to_mode.value} mode, {name}."
        message = _GREETINGS[to_mode].format(name=name)
        if from_mode is not None:
            message += f"\n\n(Switched from {from_mode.value} mode)"
        return message

    def is_valid_transition(self, from_mode: Optional[Mode], to_mode: Mode) -> bool:
        # Full mesh today. A stricter policy (e.g. finish the interview
        # before leaving interviewer mode) belongs here.
        return to_mode in _PERSONAS

    def follow_ups(self, mode: Mode) -> List[str]:
        return list(_FOLLOW_UPS[mode])


_mode_registry: Optional[ModeRegistry] = None


def get_mode_registry() -> ModeRegistry:
    global _mode_registry
    if _mode_registry is None:
        _mode_registry = ModeRegistry()
    return _mode_registry
