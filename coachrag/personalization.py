"""Personalized coaching-question suggestions.

The completion model is asked for ``count`` questions built from the user's
profile. Its line-oriented output goes through ``parse_questions``, which has a
small explicit grammar:

1. split on newlines;
2. strip leading list markers (``-``, ``*``, ``•``, ``>``, ``#``, ``1.``, ``2)``, ``(3)``)
   and surrounding quotes or bold markers;
3. keep lines that end with ``?`` and are 10-70 characters long;
4. drop case-insensitive duplicates, keeping the first occurrence.

Short results are padded from FALLBACK_PROMPTS, skipping questions already
present. Users without a profile get the fallback pool verbatim. The final list
is always checked by ``validate_prompts``.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from coachrag.collaborators import Profile, ProfileStore
from coachrag.config import settings
from coachrag.errors import (
    CompletionServiceError,
    CompletionUnavailable,
    InvalidRequest,
    PersonalizationValidationError,
)
from coachrag.generation import CompletionClient

logger = logging.getLogger(__name__)

MIN_PROMPT_CHARS = 10
MAX_PROMPT_CHARS = 70

FALLBACK_PROMPTS = [
    "How can I communicate more clearly with my team?",
    "What habits would make me a more effective leader?",
    "How do I prioritize when everything feels urgent?",
    "How can I give feedback that actually lands?",
    "What should I delegate to free up my time?",
    "How do I handle conflict without damaging trust?",
    "How can I build more confidence in big meetings?",
    "What is one skill I should develop this quarter?",
    "How do I keep my team motivated through change?",
    "How can I protect my focus time each week?",
    "How do I say no without feeling guilty?",
    "What does good work-life balance look like for me?",
    "How can I run shorter and more useful meetings?",
    "How do I coach someone who is underperforming?",
    "What strengths am I not using enough at work?",
    "How can I recover faster after a setback?",
    "How do I build trust with a new manager?",
    "What is holding me back from my next promotion?",
    "How can I make better decisions under pressure?",
    "How do I ask for more visibility on my work?",
]

MAX_COUNT = len(FALLBACK_PROMPTS)

_MARKER_RE = re.compile(r"^(?:[-*•>#]+|\d+[.)]|\(\d+\))\s*")
_WRAP_CHARS = "\"'“”‘’`*_ "


@dataclass
class PersonalizationResult:
    prompts: List[str]
    tokens_used: int
    source: str  # "model", "model+fallback" or "fallback"


def clean_line(line: str) -> str:
    """Strip list markers, quotes and emphasis from one line of model output."""
    text = line.strip()
    while True:
        stripped = _MARKER_RE.sub("", text, count=1).strip()
        if stripped == text:
            break
        text = stripped
    return text.strip(_WRAP_CHARS)


def is_valid_prompt(text: str) -> bool:
    return text.endswith("?") and MIN_PROMPT_CHARS <= len(text) <= MAX_PROMPT_CHARS


def parse_questions(raw: str) -> List[str]:
    """Extract contract-satisfying questions from raw model output, in order."""
    out: List[str] = []
    seen = set()
    for line in (raw or "").splitlines():
        q = clean_line(line)
        if not is_valid_prompt(q):
            continue
        key = q.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(q)
    return out


def pad_prompts(prompts: Sequence[str], count: int, pool: Sequence[str] = FALLBACK_PROMPTS) -> List[str]:
    """Truncate or pad ``prompts`` to ``count`` using ``pool``, skipping duplicates."""
    out = list(prompts[:count])
    seen = {p.casefold() for p in out}
    for candidate in pool:
        if len(out) >= count:
            break
        if candidate.casefold() in seen:
            continue
        seen.add(candidate.casefold())
        out.append(candidate)
    return out


def validate_prompts(prompts: Sequence[str], count: int) -> None:
    """Raise PersonalizationValidationError unless ``prompts`` meets the contract."""
    if len(prompts) != count:
        raise PersonalizationValidationError(f"expected {count} prompts, got {len(prompts)}")
    seen = set()
    for p in prompts:
        if not p or not p.strip():
            raise PersonalizationValidationError("empty prompt")
        if not is_valid_prompt(p):
            raise PersonalizationValidationError(f"prompt violates length/format contract: {p!r}")
        if p.casefold() in seen:
            raise PersonalizationValidationError(f"duplicate prompt: {p!r}")
        seen.add(p.casefold())


def build_instruction(profile: Profile, count: int) -> str:
    """System instruction embedding the profile and the output contract."""
    lines = [
        "You are an executive coach helping a professional decide what to ask their AI coach next.",
        "",
        "User profile:",
    ]
    if profile.current_position:
        lines.append(f"- Role: {profile.current_position}")
    if profile.primary_function:
        lines.append(f"- Function: {profile.primary_function}")
    if profile.company_size:
        lines.append(f"- Company size: {profile.company_size}")
    if profile.top_challenges:
        lines.append(f"- Top challenges: {', '.join(profile.top_challenges)}")
    traits = profile.top_traits(3)
    if traits:
        rendered = ", ".join(f"{name}: {round(score * 100)}%" for name, score in traits)
        lines.append(f"- Strongest personality traits: {rendered}")
    if profile.preferred_coaching_style:
        lines.append(f"- Preferred coaching style: {profile.preferred_coaching_style}")
    lines += [
        "",
        f"Write exactly {count} questions the user could ask their coach.",
        "Rules:",
        "- Each question is written in the first person (I, my, me).",
        f"- Each question is between {MIN_PROMPT_CHARS} and {MAX_PROMPT_CHARS} characters and ends with a question mark.",
        "- No two questions may be the same.",
        "- Output one question per line with no numbering, bullets or extra text.",
    ]
    return "\n".join(lines)


class PromptPersonalizer:
    def __init__(self, profiles: ProfileStore, completer: CompletionClient):
        self.profiles = profiles
        self.completer = completer

    def generate(self, owner_id: str, count: Optional[int] = None) -> PersonalizationResult:
        """Return exactly ``count`` coaching questions for ``owner_id``.

        Raises:
            InvalidRequest: count out of range or malformed profile.
            CompletionUnavailable: The model call failed.
            PersonalizationValidationError: The final list breaks the contract.
        """
        count = settings.PROMPTS_DEFAULT_COUNT if count is None else count
        if not 1 <= count <= MAX_COUNT:
            raise InvalidRequest(f"count must be between 1 and {MAX_COUNT}")

        profile = self.profiles.get(owner_id)
        if profile is None:
            logger.info("no profile, serving fallback prompts", extra={"ctx_owner_id": owner_id})
            prompts = list(FALLBACK_PROMPTS[:count])
            validate_prompts(prompts, count)
            return PersonalizationResult(prompts=prompts, tokens_used=0, source="fallback")

        messages = [
            {"role": "system", "content": build_instruction(profile, count)},
            {"role": "user", "content": f"Generate {count} personalized coaching questions for me."},
        ]
        try:
            completion = self.completer.complete(
                messages,
                temperature=settings.PROMPTS_TEMPERATURE,
                max_tokens=settings.PROMPTS_MAX_TOKENS,
            )
        except CompletionServiceError as exc:
            raise CompletionUnavailable("completion service unavailable, retry later") from exc

        parsed = parse_questions(completion.text)
        prompts = pad_prompts(parsed, count)
        source = "model" if len(parsed) >= count else "model+fallback"
        if source != "model":
            logger.info(
                "padded prompts from fallback pool",
                extra={"ctx_owner_id": owner_id, "ctx_parsed": len(parsed), "ctx_count": count},
            )
        validate_prompts(prompts, count)
        return PersonalizationResult(prompts=prompts, tokens_used=completion.tokens_used, source=source)
