"""Prompt construction for retrieval-augmented chat turns."""

from typing import Dict, List, Sequence

from kb_assistant.models.chat import HistoryMessage
from kb_assistant.models.retrieval import RetrievedChunk
from kb_assistant.utils.logging import get_logger

logger = get_logger("prompt_builder")

CONTEXT_INSTRUCTIONS = (
    "Use the following context to answer. If the context doesn't contain the answer, "
    "say so. Cite sources when possible."
)
CONTEXT_SEPARATOR = "---"


class PromptBuilder:
    """Builds the system prompt and the full message list for the completion call.

    The system prompt is the bot's base prompt followed by a context block
    in which every retrieved chunk is prefixed with a citation line such as
    ``[Source:handbook.pdf, Page 3, Section: "Refunds"]``.
    """

    def build_context_block(self, chunks: Sequence[RetrievedChunk]) -> str:
        if not chunks:
            return ""
        sections = [f"{self.citation(chunk)}\n{chunk.content}" for chunk in chunks]
        body = f"\n{CONTEXT_SEPARATOR}\n".join(sections)
        return f"{CONTEXT_INSTRUCTIONS}\n\n{CONTEXT_SEPARATOR}\n{body}\n{CONTEXT_SEPARATOR}"

    @staticmethod
    def citation(chunk: RetrievedChunk) -> str:
        meta = chunk.metadata
        parts = ["[Source:"]
        if meta.source_file:
            parts.append(meta.source_file)
        if meta.page_number:
            parts.append(f", Page {meta.page_number}")
        if meta.section_title:
            parts.append(f', Section: "{meta.section_title}"')
        parts.append("]")
        return "".join(parts)

    def build_system_prompt(self, base_prompt: str, chunks: Sequence[RetrievedChunk]) -> str:
        parts = [base_prompt.strip() if base_prompt else "", self.build_context_block(chunks)]
        prompt = "\n\n".join(part for part in parts if part)
        logger.debug(f"System prompt built: chars={len(prompt)}, context_chunks={len(chunks)}")
        return prompt

    def build_messages(
        self,
        system_prompt: str,
        history: Sequence[HistoryMessage],
        user_message: str,
    ) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(message.to_llm() for message in history)
        messages.append({"role": "user", "content": user_message})
        return messages
