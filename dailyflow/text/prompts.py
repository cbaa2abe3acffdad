STRUCTURE_SYSTEM_PROMPT = (
    "You format unstructured text into concise professional bullet points. "
    "Output only the bullet list."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a senior project assistant. Produce a concise catch-up summary for the project. "
    "Preserve factual details; do not fabricate. Most recent tasks are first in the input."
)

SUMMARY_INSTRUCTIONS = (
    "Produce sections: 1) Recent Accomplishments 2) Active / Pending 3) Risks / Blockers "
    "4) Suggested Next Steps. Under 400 words. Use markdown headings showing dates and bullet "
    "lists with concise description."
)


def summary_user_prompt(project_name: str, context: str, instructions: str) -> str:
    return f"Project: {project_name}\n\nInstructions:\n{instructions}\n\nContext:\n{context}"
