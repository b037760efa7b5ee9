# tests/test_motivation_agent.py
import pytest
from agents.motivation_agent import MotivationExtractor, parse_motivation_output
from core.exceptions import ProviderError
from models import MotivationStrength

REPLY = (
    "Motivation: Win back the family sword from the sect that stole it\n"
    "Strength: GOOD\n"
    "Rationale: Powerful enemies and a clear trophy.\n"
    "Optimization: Tie the sword to a dying parent."
)


def test_parse_full_reply():
    result = parse_motivation_output(REPLY)
    assert result.found
    assert result.motivation.startswith("Win back the family sword")
    assert result.strength == MotivationStrength.GOOD
    assert result.optimization == "Tie the sword to a dying parent."


@pytest.mark.parametrize("reply", ["Motivation: NONE\nStrength: GOOD", "no labels here", ""])
def test_parse_missing_motivation_is_empty_and_weak(reply):
    result = parse_motivation_output(reply)
    assert not result.found
    assert result.strength == MotivationStrength.WEAK


def test_unknown_strength_defaults_to_weak():
    result = parse_motivation_output("Motivation: survive\nStrength: excellent")
    assert result.strength == MotivationStrength.WEAK


@pytest.mark.asyncio
async def test_extract_empty_brief_skips_provider(make_provider):
    provider = make_provider()
    result = await MotivationExtractor(provider).extract("   ")
    assert not result.found
    assert provider.calls == []


@pytest.mark.asyncio
async def test_extract_caches_per_brief(make_provider):
    provider = make_provider([REPLY])
    extractor = MotivationExtractor(provider)
    first = await extractor.extract("The sect stole the sword.")
    second = await extractor.extract("The sect stole the sword.")
    assert first == second
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_extract_propagates_provider_error(make_provider):
    with pytest.raises(ProviderError):
        await MotivationExtractor(make_provider([ProviderError("x")])).extract("brief")
