# tests/test_story_models.py
import pytest
from core.exceptions import ConsistencyConflict
from models import (
    ActivityStatus,
    CharacterProfile,
    CharacterRole,
    ChronicleEvent,
    ForeshadowingItem,
    ForeshadowingStatus,
    MemoryBank,
)


def test_character_from_record_tolerates_bad_subfields():
    profile = CharacterProfile.from_record(
        {
            "name": "Lin",
            "role": "Protagonist",
            "traits": "{not json",
            "key_events": '["saved the village"]',
            "relationships": ["not", "a", "map"],
            "first_appearance": "3",
            "last_appearance": "oops",
            "status": "vanished",
        }
    )
    assert profile.role == CharacterRole.PROTAGONIST
    assert profile.traits == []
    assert profile.key_events == ["saved the village"]
    assert profile.relationships == {}
    assert profile.first_appearance == 3
    assert profile.last_appearance is None
    assert profile.status == ActivityStatus.ACTIVE


def test_character_from_record_repairs_appearance_invariants():
    profile = CharacterProfile.from_record(
        {"name": "Mo", "role": "sidekick", "first_appearance": 5, "last_appearance": 2}
    )
    assert profile.role == CharacterRole.MINOR
    assert profile.last_appearance == 5
    assert profile.appearance_count == 1


def test_character_from_record_requires_name():
    with pytest.raises(KeyError):
        CharacterProfile.from_record({"role": "major"})


def test_record_appearance_updates_window_and_reactivates():
    profile = CharacterProfile(name="Su", status=ActivityStatus.INACTIVE)
    profile.record_appearance(7)
    profile.record_appearance(4)
    assert (profile.first_appearance, profile.last_appearance) == (4, 7)
    assert profile.appearance_count == 2
    assert profile.status == ActivityStatus.ACTIVE


def test_to_record_round_trips_through_from_record():
    profile = CharacterProfile(
        name="Qi", role=CharacterRole.MAJOR, relationships={"Lin": "rival"}
    )
    assert CharacterProfile.from_record(profile.to_record()) == profile


def test_chronicle_defaults():
    event = ChronicleEvent.from_record({"chapter_number": "2", "events": '["a", "b"]'})
    assert event.events == ["a", "b"]
    assert event.event_type == "other"
    assert event.importance == 5


def test_foreshadowing_drops_resolution_before_planting():
    item = ForeshadowingItem.from_record(
        {"id": "f1", "content": "the sealed door", "planted_chapter": 5, "resolved_chapter": 3}
    )
    assert item.resolved_chapter is None
    assert item.is_open


def test_foreshadowing_resolve_rules():
    item = ForeshadowingItem(id="f2", content="a debt", planted_chapter=4)
    with pytest.raises(ConsistencyConflict):
        item.resolve(3)
    item.resolve(9)
    assert item.status == ForeshadowingStatus.RESOLVED
    assert item.resolved_chapter == 9
    with pytest.raises(ConsistencyConflict):
        item.resolve(10)


def test_memory_bank_open_foreshadowing():
    bank = MemoryBank(
        story_id="s",
        foreshadowing=[
            ForeshadowingItem(id="a", content="x", planted_chapter=1),
            ForeshadowingItem(
                id="b",
                content="y",
                planted_chapter=1,
                resolved_chapter=2,
                status=ForeshadowingStatus.RESOLVED,
            ),
        ],
    )
    assert [item.id for item in bank.open_foreshadowing] == ["a"]
