# graph/answer_policy.py
from __future__ import annotations

from govqa.core.config import PipelineConfig
from govqa.schemas.answer import AnswerPolicy, HeadingRule
from govqa.schemas.evidence import Tier

BOTTOM_LINE = "Bottom line"
WHAT_HAPPENED = "What happened"
WHAT_LAW_REQUIRES = "What the law generally requires"
WHAT_CHANGES = "What this changes"
UNKNOWNS = "Unknowns that matter"

SECTIONED_POLICY = AnswerPolicy(
    profile="sectioned",
    max_words=500,
    headings=[
        HeadingRule(name=BOTTOM_LINE, max_bullets=0),
        HeadingRule(name=WHAT_HAPPENED, max_bullets=5),
        HeadingRule(name=WHAT_LAW_REQUIRES, max_bullets=5),
        HeadingRule(name=WHAT_CHANGES, max_bullets=4),
        HeadingRule(name=UNKNOWNS, max_bullets=4),
    ],
    max_bullet_words=20,
    min_complete_words=180,
    sweet_spot_words=(200, 500),
    max_output_tokens=4000,
    temperature=0.3,
    min_state_citations_in_law_section=2,
    law_section=WHAT_LAW_REQUIRES,
    user_citation_section=WHAT_HAPPENED,
    summary_section=BOTTOM_LINE,
    summary_max_words=60,
)

# Heading-free, character-capped; bullets of ~160 chars.
PROSE_POLICY = AnswerPolicy(
    profile="prose",
    max_words=320,
    max_chars=1900,
    headings=[],
    max_bullet_words=28,
    max_bullets=6,
    min_complete_words=60,
    sweet_spot_words=(80, 320),
    max_output_tokens=520,
    temperature=0.3,
    min_state_citations_in_law_section=2,
)

TIER_INSTRUCTIONS = {
    "A": (
        "TIER A (Strong sources):\n"
        "- Cite specifics from documents\n"
        "- Direct, confident framing where supported\n"
        "- Include statutory references when found in state documents\n"
        "- Detailed analysis is appropriate"
    ),
    "B": (
        "TIER B (Moderate sources):\n"
        "- Cite available specifics\n"
        "- Add explicit \"gaps/depends\" qualifiers\n"
        "- Use hedged language for areas without strong support\n"
        "- Acknowledge where more documentation would help"
    ),
    "C": (
        "TIER C (Weak sources):\n"
        "- Summarize user-provided facts primarily\n"
        "- Provide GENERAL legal framework only (no specific RSA numbers)\n"
        "- Keep the answer brief and hedged\n"
        "- Be explicit about limited archival coverage"
    ),
}


def select_policy(config: PipelineConfig) -> AnswerPolicy:
    """The configured answer profile with the configured generation settings applied."""
    policy = PROSE_POLICY if config.answer_profile == "prose" else SECTIONED_POLICY
    update = {"temperature": config.synth_temperature}
    if config.synth_max_tokens:
        update["max_output_tokens"] = config.synth_max_tokens
    return policy.model_copy(update=update)


def tier_instructions(tier: Tier) -> str:
    return TIER_INSTRUCTIONS.get(tier, TIER_INSTRUCTIONS["C"])


def format_instructions(policy: AnswerPolicy) -> str:
    """Render the answer-format block of the system instruction for a policy."""
    if policy.profile == "prose":
        return (
            "## ANSWER FORMAT\n"
            f"- Plain prose, no section headings, at most {policy.max_chars} characters in total.\n"
            "- Open with one or two sentences that answer the question directly.\n"
            f"- Then at most {policy.max_bullets} \"Key points\" bullets, each under 160 characters.\n"
            "- Close with a one-line \"Sources\" note naming the citations you relied on."
        )

    lines = ["## ANSWER STRUCTURE (use these headings, in this order, as **Heading**):"]
    for idx, rule in enumerate(policy.headings, start=1):
        if rule.max_bullets == 0:
            lines.append(f"{idx}. **{rule.name}** - 1-3 sentences of prose, no bullets.")
        else:
            lines.append(f"{idx}. **{rule.name}** - at most {rule.max_bullets} bullets.")
    lines += [
        "",
        "## LIMITS",
        f"- At most {policy.max_words} words in total.",
        f"- Each bullet at most {policy.max_bullet_words} words.",
    ]
    if policy.law_section:
        lines.append(
            f"- \"{policy.law_section}\" must cite at least {policy.min_state_citations_in_law_section} "
            "[Sx] state documents when state documents are provided."
        )
    if policy.user_citation_section:
        lines.append(f"- [USER] citations may appear only under \"{policy.user_citation_section}\".")
    return "\n".join(lines)
