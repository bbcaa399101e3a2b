"""Evaluation prompt templates, addressed by id."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from evalrelay.llm.exceptions import BadRequest


@dataclass(frozen=True)
class PromptTemplate:
    template_id: str
    instructions: str
    accepts_context: bool = False

    def render(self, text: str, context: str | None = None) -> str:
        prompt = self.instructions
        if self.accepts_context and context and context.strip():
            prompt += (
                f"\n\nIMPORTANT CONTEXT: {context.strip()}\n\n"
                "Adjust your evaluation to this context. A fragment or an "
                "abstract is not penalized for lacking full development."
            )
        return f"{prompt}\n\nTEXT TO ASSESS:\n{text}"


INTELLIGENCE = PromptTemplate(
    template_id="intelligence",
    instructions=(
        "Assess the intelligence of the following text. Start by summarizing "
        "and categorizing it. For each question (Is it insightful? Does it "
        "develop points? Is the organization hierarchical or merely "
        "sequential? Are the points fresh or cliched? Is the writing direct "
        "or evasive?) answer with at least one direct quote from the text.\n\n"
        "PROVIDE A FINAL SCORE OUT OF 100 IN THE FORMAT: SCORE: X/100"
    ),
)

CASE_ASSESSMENT = PromptTemplate(
    template_id="case_assessment",
    instructions=(
        "Assess how well this text makes its case. Analyze argument "
        "effectiveness, proof quality and claim credibility.\n\n"
        "REQUIRED FORMAT:\n"
        "PROOF EFFECTIVENESS: [0-100]/100\n"
        "CLAIM CREDIBILITY: [0-100]/100\n"
        "NON-TRIVIALITY: [0-100]/100\n"
        "PROOF QUALITY: [0-100]/100\n"
        "FUNCTIONAL WRITING: [0-100]/100\n"
        "OVERALL CASE SCORE: [0-100]/100\n\n"
        "Then provide sections: Strengths, Weaknesses, Potential "
        "Counterarguments, Conclusion."
    ),
    accepts_context=True,
)

FICTION = PromptTemplate(
    template_id="fiction",
    instructions=(
        "Assess this fiction text for literary quality, narrative "
        "effectiveness, character development and prose style. Provide "
        "detailed analysis of literary merit, plot structure and creative "
        "intelligence."
    ),
)

PROMPT_TEMPLATES: Mapping[str, PromptTemplate] = MappingProxyType({
    t.template_id: t for t in (INTELLIGENCE, CASE_ASSESSMENT, FICTION)
})

DEFAULT_TEMPLATE = INTELLIGENCE.template_id


def get_template(template_id: str) -> PromptTemplate:
    try:
        return PROMPT_TEMPLATES[template_id]
    except KeyError:
        raise BadRequest(f"Unknown prompt template '{template_id}'") from None


def render_prompt(template_id: str, text: str, context: str | None = None) -> str:
    return get_template(template_id).render(text, context)
