"""Prompt personalizer tests."""

from __future__ import annotations

import pytest

from coachrag.collaborators import ProfileStore
from coachrag.errors import CompletionUnavailable, InvalidRequest, PersonalizationValidationError
from coachrag.models import UserProfile
from coachrag.personalization import (
    FALLBACK_PROMPTS,
    PromptPersonalizer,
    build_instruction,
    clean_line,
    pad_prompts,
    parse_questions,
    validate_prompts,
)

from tests.conftest import FakeCompleter

MESSY_OUTPUT = """Here are your questions:
1. How can I delegate more effectively to my team?
2) "How do I handle pushback from senior stakeholders?"
- **What should I focus on in my first 90 days?**
* how can I delegate more effectively to my team?
• Why?
> How can I turn my analytical strength into better storytelling for executives at board level?
# How do I stay calm when deadlines collide?
This line is not a question.
"""


@pytest.fixture
def profile(db) -> UserProfile:
    row = UserProfile(
        owner_id="alice",
        current_position="Engineering Manager",
        primary_function="Engineering",
        company_size="51-200",
        top_challenges=["delegation", "stakeholder management"],
        personality_scores={"openness": 0.91, "conscientiousness": 0.72, "extraversion": 0.35,
                            "agreeableness": 0.8},
        preferred_coaching_style="direct",
    )
    db.add(row)
    db.commit()
    return row


def test_fallback_pool_satisfies_contract() -> None:
    validate_prompts(FALLBACK_PROMPTS, len(FALLBACK_PROMPTS))


def test_parser_strips_markers_and_filters() -> None:
    assert parse_questions(MESSY_OUTPUT) == [
        "How can I delegate more effectively to my team?",
        "How do I handle pushback from senior stakeholders?",
        "What should I focus on in my first 90 days?",
        "How do I stay calm when deadlines collide?",
    ]


@pytest.mark.parametrize(
    "line, expected",
    [
        ("  3. How do I grow?  ", "How do I grow?"),
        ("(4) How do I grow?", "How do I grow?"),
        ("- 1. How do I grow?", "How do I grow?"),
        ("“How do I grow?”", "How do I grow?"),
        ("5 habits I could build?", "5 habits I could build?"),
    ],
)
def test_clean_line(line: str, expected: str) -> None:
    assert clean_line(line) == expected


def test_pad_skips_existing_and_truncates() -> None:
    assert pad_prompts([FALLBACK_PROMPTS[0].upper()], 3) == [
        FALLBACK_PROMPTS[0].upper(),
        FALLBACK_PROMPTS[1],
        FALLBACK_PROMPTS[2],
    ]
    assert pad_prompts(FALLBACK_PROMPTS, 2) == FALLBACK_PROMPTS[:2]


@pytest.mark.parametrize(
    "prompts",
    [
        ["How do I grow as a leader?"],
        ["How do I grow as a leader?", "how do i grow as a leader?"],
        ["How do I grow as a leader?", "Too short?"[:5]],
        ["How do I grow as a leader?", "Statement without question mark"],
    ],
)
def test_validate_rejects_contract_violations(prompts) -> None:
    with pytest.raises(PersonalizationValidationError):
        validate_prompts(prompts, 2)


def test_instruction_embeds_profile_and_top_traits(profile, db) -> None:
    text = build_instruction(ProfileStore(db).get("alice"), 5)

    assert "Engineering Manager" in text
    assert "delegation, stakeholder management" in text
    assert "openness: 91%, agreeableness: 80%, conscientiousness: 72%" in text
    assert "extraversion" not in text
    assert "exactly 5 questions" in text


def test_generate_pads_short_model_output(profile, db) -> None:
    completer = FakeCompleter(reply=MESSY_OUTPUT, tokens=120)

    result = PromptPersonalizer(ProfileStore(db), completer).generate("alice", 6)

    assert len(result.prompts) == 6
    assert result.prompts[:4] == parse_questions(MESSY_OUTPUT)
    assert result.prompts[4:] == FALLBACK_PROMPTS[:2]
    assert result.source == "model+fallback"
    assert result.tokens_used == 120
    assert completer.calls[0]["temperature"] == pytest.approx(0.8)
    validate_prompts(result.prompts, 6)


def test_generate_truncates_long_model_output(profile, db) -> None:
    reply = "\n".join(f"How can I improve skill number {i}?" for i in range(12))

    result = PromptPersonalizer(ProfileStore(db), FakeCompleter(reply=reply)).generate("alice", 3)

    assert result.prompts == [f"How can I improve skill number {i}?" for i in range(3)]
    assert result.source == "model"


def test_missing_profile_returns_fallback_pool(db) -> None:
    completer = FakeCompleter(reply="unused")

    result = PromptPersonalizer(ProfileStore(db), completer).generate("nobody", 4)

    assert result.prompts == FALLBACK_PROMPTS[:4]
    assert result.source == "fallback"
    assert completer.calls == []


def test_completion_failure_surfaces(profile, db) -> None:
    with pytest.raises(CompletionUnavailable):
        PromptPersonalizer(ProfileStore(db), FakeCompleter(fail=True)).generate("alice", 5)


@pytest.mark.parametrize("count", [0, 21])
def test_count_out_of_range(db, count) -> None:
    with pytest.raises(InvalidRequest):
        PromptPersonalizer(ProfileStore(db), FakeCompleter()).generate("alice", count)


def test_malformed_profile_fails_closed(db) -> None:
    db.add(UserProfile(owner_id="carol", personality_scores={"openness": 7}))
    db.commit()

    with pytest.raises(InvalidRequest):
        ProfileStore(db).get("carol")


def test_largest_count_uses_whole_pool(db) -> None:
    result = PromptPersonalizer(ProfileStore(db), FakeCompleter()).generate("nobody", 20)

    assert result.prompts == FALLBACK_PROMPTS
    validate_prompts(result.prompts, 20)
