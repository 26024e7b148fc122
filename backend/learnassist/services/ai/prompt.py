"""
Prompt composition.

The system instruction is built from three layers, always in this order:
1. mode persona and personality config
2. language directive
3. grounding directive

The grounding directive has exactly two branches. With sources, the model is
told to prefer them, cite the source number it used, and flag any answer that
needs facts outside them. Without sources, the model must open with the
general-knowledge disclaimer. Dropping either instruction is a bug.
"""
from typing import Dict, List, Optional, Sequence

from learnassist.models.domain import (
    ContentSource,
    ConversationTurn,
    Mode,
    PersonalityConfig,
    PromptPayload,
    Role,
)
from learnassist.services.ai.personality import ModeRegistry, get_mode_registry

GENERAL_KNOWLEDGE_DISCLAIMER = (
    "I don't have access to your specific study materials, so I'll provide a general answer..."
)
OUTSIDE_MATERIALS_DISCLAIMER = (
    "This information is not in your uploaded materials. Based on general knowledge..."
)
CITATION_INSTRUCTION = 'Always cite which source you used (e.g., "According to Source 1...").'

PROMPT_HISTORY_TURNS = 10

_LANGUAGE_DIRECTIVES: Dict[str, str] = {
    "en": "Respond in English.",
    "en-us": "Respond in English.",
    "en-in": "Respond in English.",
    "hi": "Respond in Hindi.",
    "hi-in": "Respond in Hindi.",
    "hinglish": "Respond in Hinglish (mix of Hindi and English).",
}


def language_directive(language: str) -> str:
    key = (language or "en").strip().lower()
    directive = _LANGUAGE_DIRECTIVES.get(key)
    if directive:
        return directive
    return f"Respond in the language with code '{language.strip()}', in a natural register for a learner."


def grounding_directive(sources: Sequence[ContentSource]) -> str:
    if not sources:
        return (
            "NOTE: The student has not uploaded any study materials yet, or no relevant "
            "content was found. You may use general knowledge to answer, but clearly "
            "indicate this by starting your answer with exactly:\n"
            f'"{GENERAL_KNOWLEDGE_DISCLAIMER}"'
        )

    lines = [
        "IMPORTANT: The student has uploaded study materials. ALWAYS prioritize "
        "information from these materials when answering questions. Here is the "
        "relevant content from their uploaded documents:",
        "",
    ]
    for number, source in enumerate(sources, start=1):
        lines.append(f"[Source {number}]:")
        lines.append(source.text.strip())
        lines.append("")

    lines.extend([
        "When answering:",
        "1. Use information from the uploaded materials above whenever possible.",
        f"2. {CITATION_INSTRUCTION}",
        "3. If the answer needs facts that are not in any of the sources above, "
        f'start your answer with: "{OUTSIDE_MATERIALS_DISCLAIMER}"',
    ])
    return "\n".join(lines)


def personality_block(personality: PersonalityConfig) -> str:
    return "\n".join([
        f"Tone: {personality.tone}.",
        f"Response style: {personality.response_style}.",
        f"Questioning approach: {personality.questioning_approach}.",
        f"Feedback style: {personality.feedback_style}.",
        f"Examples: {personality.example_usage}.",
        f"Language complexity: {personality.language_complexity}.",
    ])


def build_messages(history: Sequence[ConversationTurn], query: str) -> List[Dict[str, str]]:
    """Last PROMPT_HISTORY_TURNS turns plus the current query; system turns stay out."""
    recent = list(history)[-PROMPT_HISTORY_TURNS:]
    messages = [
        {"role": turn.role.value, "content": turn.content}
        for turn in recent
        if turn.role is not Role.SYSTEM
    ]
    messages.append({"role": Role.USER.value, "content": query})
    return messages


class PromptComposer:
    def __init__(self, registry: Optional[ModeRegistry] = None):
        self._registry = registry or get_mode_registry()

    def compose(
        self,
        mode: Mode,
        language: str,
        sources: Sequence[ContentSource],
        history: Sequence[ConversationTurn],
        query: str,
        personality: Optional[PersonalityConfig] = None,
    ) -> PromptPayload:
        personality = personality or self._registry.config_for(mode)
        system = "\n\n".join([
            self._registry.persona(mode) + "\n" + personality_block(personality),
            language_directive(language),
            grounding_directive(sources),
        ])
        return PromptPayload(
            system=system,
            messages=build_messages(history, query),
            grounded=bool(sources),
            source_count=len(sources),
            language=language,
        )
