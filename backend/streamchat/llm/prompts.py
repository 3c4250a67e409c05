"""Prompt text for the chat assistant and the summarizer."""

from typing import Optional, Sequence

# Substituted into the context slot when retrieval finds nothing
NO_DOCUMENTS_MARKER = "No relevant documents were found for this question."

# Substituted into the context slot when the vector store cannot be reached
RETRIEVAL_UNAVAILABLE_PLACEHOLDER = (
    "The document search service is unavailable right now, "
    "so no document context could be retrieved."
)

NO_SUMMARY_PLACEHOLDER = "No earlier context."

ASSISTANT_INSTRUCTION = (
    "You are a helpful assistant that answers clearly and concisely. "
    "Reply in the language the user writes in."
)

RAG_INSTRUCTION = """## Answering from documents
- Use the document excerpts below to answer the question
- If the excerpts do not contain the answer, say that no relevant information was found
- Do not guess or invent facts that are not in the excerpts"""

TOOLS_INSTRUCTION = """## Tools
- Call a tool when the question needs facts you do not have: {tool_names}
- Base your answer on the tool results and say so when a tool found nothing
- Present tables from tool results as they are"""


def get_system_prompt(
    summary: str,
    context: Optional[str] = None,
    tool_names: Optional[Sequence[str]] = None,
) -> str:
    """Get the leading system message for a turn.

    Args:
        summary: Running summary of earlier conversation (may be empty)
        context: Retrieved document context; None when retrieval is disabled
        tool_names: Names of the tools offered this turn, if any

    Returns:
        System prompt string
    """
    parts = [
        ASSISTANT_INSTRUCTION,
        f"## Earlier conversation (summary)\n{summary or NO_SUMMARY_PLACEHOLDER}",
    ]
    if tool_names:
        parts.append(TOOLS_INSTRUCTION.format(tool_names=", ".join(tool_names)))
    if context is not None:
        parts.append(RAG_INSTRUCTION)
        parts.append(f"## Document excerpts\n{context}")
    return "\n\n".join(parts)


def get_summary_instruction(max_words: int) -> str:
    """Get the system instruction for summary updates."""
    return (
        "You maintain a running summary of a conversation. "
        "Condense the existing summary and the new messages into one updated summary. "
        "Preserve key facts, names, numbers, preferences and decisions; drop small talk. "
        "Write the summary in the same natural language the conversation uses. "
        f"Use at most {max_words} words. Reply with the summary only."
    )


def get_summary_request(old_summary: str, transcript: str) -> str:
    """Get the user message carrying the material to summarize."""
    return (
        f"Existing summary:\n{old_summary or NO_SUMMARY_PLACEHOLDER}\n\n"
        f"New messages:\n{transcript}\n\n"
        "Updated summary:"
    )
