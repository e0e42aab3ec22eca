"""
Prompt templates for the three model-facing calls: router, validation, improvement.

Templates are plain strings with ``{{NAME}}`` placeholders so the JSON examples
inside them need no brace escaping.
"""

from __future__ import annotations

from typing import Mapping, Sequence

NO_ACTIONS_MARKER = "No actions completed yet. This is the first step."

ROUTER_TEMPLATE = """You are an intelligent sequential router AND extractor for a prompt analysis system.
Your job is to decide the NEXT SINGLE ACTION and, if it is an extraction action, EXTRACT THE DATA in the same response.

REASONING TYPE AWARENESS:
Identify which type of reasoning you are using for this decision:
- "analytical": breaking the prompt down into components
- "sequential": following a step-by-step process, considering completed actions
- "pattern-matching": recognizing patterns in the prompt to identify relevant information
- "contextual": using the completed actions to make an informed decision

User Prompt:
\"\"\"
{{PROMPT}}
\"\"\"

{{COMPLETED}}

Available actions (choose ONE):
1. validate: validate prompt quality (handled separately, no extraction needed)
2. extractPersonal: extract personal info (name, location, age, goals, interests, language)
3. extractProfessional: extract professional info (job title, domain, company, projects, tech stack, experience)
4. extractTask: extract task context (current task, what they are working on)
5. extractIntent: extract primary intent and goal type
6. extractTone: extract tone/style preferences (concise/detailed, casual/professional)
7. extractExternal: extract external context (tools, frameworks, APIs, libraries)
8. extractTags: generate 3-5 relevant tags/keywords
9. generateImprovement: generate the improved prompt (handled separately, no extraction needed)
10. done: all relevant actions completed

INTERNAL SELF-CHECK REQUIRED:
1. Is this action actually needed for this prompt, given the completed actions?
2. Has this action (or an equivalent one) already been completed?
3. Is there enough information in the prompt for this action?
4. What could go wrong with this decision?
5. Is there a better alternative action?

FALLBACK STRATEGY:
Always provide a fallbackAction: the logical next step if your primary choice fails or is invalid.

CRITICAL INSTRUCTION:
- For extractPersonal, extractProfessional, extractTask, extractIntent, extractTone, extractExternal or extractTags you MUST include "extractedData" with the extracted information.
- For validate, generateImprovement or done do NOT include extractedData.

Return ONLY valid JSON.

For EXTRACTION actions:
{
  "nextAction": "extractPersonal",
  "reasoning": "why this extraction is needed",
  "progress": "Step X of ~Y",
  "reasoningType": "analytical|sequential|pattern-matching|contextual",
  "confidence": 0.95,
  "selfCheck": {"isActionValid": true, "potentialIssues": [], "alternativeAction": "extractProfessional"},
  "fallbackAction": "extractIntent",
  "extractedData": {}
}

extractedData shapes (only include fields with actual data):
- extractPersonal: {"name": "", "location": "", "age": 0, "goals": [], "interests": [], "languagePreference": ""}
- extractProfessional: {"jobTitle": "", "domain": "", "company": "", "ongoingProjects": [], "techStack": [], "experience": ""}
- extractTask: {"currentTask": ""}
- extractIntent: {"primaryIntent": "", "intentType": "question|instruction|creative|code|analysis"}
- extractTone: {"tone": "", "style": "", "verbosity": ""}
- extractExternal: {"tools": [], "frameworks": [], "libraries": [], "apis": [], "fileNames": [], "urls": []}
- extractTags: ["tag1", "tag2", "tag3"]

For NON-EXTRACTION actions:
{
  "nextAction": "validate|generateImprovement|done",
  "reasoning": "why this is the next step",
  "progress": "Step X of ~Y",
  "reasoningType": "sequential",
  "confidence": 0.95,
  "selfCheck": {"isActionValid": true, "potentialIssues": [], "alternativeAction": null},
  "fallbackAction": "done"
}

Guidelines:
- ALWAYS start with "validate" when no actions have been completed yet.
- Extract only information present in the prompt; do not invent details.
- ALWAYS run "generateImprovement" before returning "done".
- Never repeat an action that is already completed.
- ALWAYS include reasoningType, confidence, selfCheck and fallbackAction.
- Be honest about confidence (0.0 to 1.0). Below 0.7, strongly consider the fallback action and explain why.

Return ONLY the JSON object, no other text."""

VALIDATION_TEMPLATE = """You are a Prompt Evaluation Assistant.
Review the prompt below and assess how well it supports structured, step-by-step reasoning in an LLM
(for math, logic, planning or tool use).

Evaluate it on these criteria:
1. Explicit reasoning instructions: does it ask the model to reason step by step or explain its thinking?
2. Structured output format: does it enforce a predictable, parseable output format?
3. Separation of reasoning and tools: are reasoning steps separated from computation or tool use?
4. Conversation loop support: could it work in a multi-turn setting that feeds back previous results?
5. Instructional framing: does it give examples or define exactly how responses should look?
6. Internal self-checks: does it ask the model to verify intermediate steps?
7. Reasoning type awareness: does it ask the model to identify the type of reasoning used?
8. Error handling or fallbacks: does it say what to do when uncertain or when a tool fails?
9. Overall clarity and robustness: is it easy to follow and likely to reduce hallucination and drift?

Respond with a structured review in this format:
{
  "explicit_reasoning": true,
  "structured_output": true,
  "tool_separation": true,
  "conversation_loop": true,
  "instructional_framing": true,
  "internal_self_checks": false,
  "reasoning_type_awareness": false,
  "fallbacks": false,
  "overall_clarity": "Excellent structure, but could improve with self-checks and error fallbacks."
}

Prompt to analyze:
\"\"\"
{{PROMPT}}
\"\"\"

Return ONLY the JSON object, no other text."""

IMPROVEMENT_TEMPLATE = """You are a prompt engineering assistant.
Rewrite the user's prompt so an LLM can answer it with explicit, structured, verifiable reasoning.

Known context about the user (use it only where it genuinely helps):
{{CONTEXT}}

Original prompt:
\"\"\"
{{PROMPT}}
\"\"\"

Keep the user's intent and all concrete details. Add step-by-step reasoning instructions, a clear
output format, self-checks and a fallback for uncertain cases where they are missing.

Respond with:
{
  "improvedPrompt": "the rewritten prompt",
  "improvements": ["what changed and why"],
  "reasoning": "short explanation of the overall approach",
  "contextUsed": ["which pieces of user context were used"]
}

Return ONLY the JSON object, no other text."""


def _render(template: str, values: Mapping[str, str]) -> str:
    out = template
    for key, value in values.items():
        out = out.replace("{{" + key + "}}", value)
    return out


def render_completed_actions(completed_actions: Sequence[str]) -> str:
    if not completed_actions:
        return NO_ACTIONS_MARKER
    lines = "\n".join(f"- {action}" for action in completed_actions)
    return f"Actions already completed:\n{lines}"


def build_router_prompt(prompt: str, completed_actions: Sequence[str]) -> str:
    return _render(
        ROUTER_TEMPLATE,
        {"COMPLETED": render_completed_actions(completed_actions), "PROMPT": prompt},
    )


def build_validation_prompt(prompt: str) -> str:
    return _render(VALIDATION_TEMPLATE, {"PROMPT": prompt})


def build_improvement_prompt(prompt: str, context_summary: str) -> str:
    return _render(IMPROVEMENT_TEMPLATE, {"CONTEXT": context_summary, "PROMPT": prompt})


__all__ = [
    "NO_ACTIONS_MARKER",
    "build_router_prompt",
    "build_validation_prompt",
    "build_improvement_prompt",
    "render_completed_actions",
]
