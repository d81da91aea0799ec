"""Prompt templates for scoring, script writing, summaries and episode chat."""

from __future__ import annotations

DEFAULT_FOCUS = "AI, agentic commerce and marketing disruption"

CONTEXT_PROMPT = """You are the editor of a daily audio intelligence briefing on {focus}.
Your listeners are senior marketing, commerce and product leaders who want to know
what changed in the last day and why it matters to their business.
Prefer concrete developments (launches, deals, data, regulation, platform changes)
over opinion, recaps and vendor marketing."""

SCORING_PROMPT = """Score each item below for inclusion in today's briefing.

Use a 0-10 scale:
- 9-10: major development the audience must hear about today
- 7-8: clearly relevant and newsworthy
- 5-6: relevant but minor, or relevant with little new information
- 1-4: tangential, promotional or stale
- 0: off-topic or a duplicate of another item in this list

Respond with a JSON array only, one object per item, in this form:
[{"id": "<item id>", "score": <number>, "reason": "<one short sentence>"}]"""

RECENT_TOPICS_HEADER = "## Recently Covered Topics (last {count} episodes)"

RECENT_TOPICS_INSTRUCTION = (
    "Items that cover the SAME story as a recent episode should score 0 unless there is "
    "a genuinely new development or significant update. Minor follow-ups on the same story "
    "score at most 4."
)

SCRIPT_PROMPT = """Write today's briefing script from the source material below.

Structure (separate every paragraph with a blank line):
1. A short opener that greets the listener and previews the top stories.
2. Three story paragraphs, most important first. Each explains what happened and why it matters.
3. One "deeper thread" paragraph connecting the stories into a wider trend.
4. A brief closer.

Rules:
- Write for the ear: plain sentences, no headings, no bullet points, no markdown.
- After each sentence that draws on an item, add a citation marker [source: <item id>]
  using the item's exact id. Never invent ids.
- Aim for 700 to 1000 words."""

SUMMARY_PROMPT = (
    "Summarise this briefing script in one to two sentences for a podcast episode description. "
    "Be specific about the topics covered. No quotes or formatting.\n\n{script}"
)

FALLBACK_SUMMARY = "Daily intelligence briefing on {focus}."

CHAT_PROMPT = """You answer questions about past episodes of a daily audio briefing on {focus}.
The user message starts with the recent episodes (summaries, section titles, cited sources and
the latest full script), followed by the question.

Rules:
- Ground every answer in the episode data and cite episodes by date.
- Be concise and direct.
- If the episodes do not cover something, say so plainly.
- Never invent sources, links or quotes.
- When asked about trends, look across episodes rather than at one."""

CHAT_NO_EPISODES = "No episodes have been generated yet."

CHAT_CONTEXT_UNAVAILABLE = "No episode data available."


def context_prompt(focus: str = DEFAULT_FOCUS) -> str:
    return CONTEXT_PROMPT.format(focus=focus or DEFAULT_FOCUS)


def fallback_summary(focus: str = DEFAULT_FOCUS) -> str:
    return FALLBACK_SUMMARY.format(focus=focus or DEFAULT_FOCUS)


def chat_prompt(focus: str = DEFAULT_FOCUS) -> str:
    return CHAT_PROMPT.format(focus=focus or DEFAULT_FOCUS)
