# tests/test_term_miner.py
import re

import pytest
from config import settings
from core.exceptions import ProviderError, ValidationError
from orchestration.term_miner import TermMiner, parse_terms


def test_parse_terms_strips_markers_and_dedupes():
    text = "1. Azure Peak\n2) Jade Hollow\n- Azure Peak\n* \n• Iron Ford.\n" + "x" * 60
    assert parse_terms(text) == ["Azure Peak", "Jade Hollow", "Iron Ford"]


@pytest.mark.asyncio
async def test_mine_terms_dedupes_across_rounds(repo, make_provider):
    def respond(prompt: str) -> str:
        round_number = int(re.search(r"round (\d+)", prompt).group(1))
        if round_number == 3:
            raise ProviderError("rate limited")
        return f"Shared Name\nUnique {round_number}"

    await repo.insert_term("place names", "Old Town")
    provider = make_provider(responder=lambda p: "Old Town\n" + respond(p))
    report = await TermMiner(repo, provider).mine_terms("place names", loops=4, batch_size=2)

    assert report.calls == 4
    assert report.failed_calls == 1
    assert report.extracted == 9
    assert report.inserted == 4
    assert report.skipped == 5
    terms = await repo.list_terms("place names")
    assert sorted(terms) == ["Old Town", "Shared Name", "Unique 1", "Unique 2", "Unique 4"]
    assert len(provider.calls) == 4
    assert provider.calls[0][2].temperature == settings.TEMPERATURE_MINING


@pytest.mark.asyncio
async def test_mine_terms_validates_input(repo, make_provider):
    miner = TermMiner(repo, make_provider())
    with pytest.raises(ValidationError):
        await miner.mine_terms("", loops=1)
    with pytest.raises(ValidationError):
        await miner.mine_terms("names", loops=0)
