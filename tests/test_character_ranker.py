# tests/test_character_ranker.py
from models import ActivityStatus, CharacterProfile, CharacterRole
from processing.character_ranker import CharacterRelevanceRanker


def _profile(name, role=CharacterRole.MINOR, last=None, status=ActivityStatus.ACTIVE, **kw):
    return CharacterProfile(name=name, role=role, last_appearance=last, status=status, **kw)


def test_score_combines_role_recency_and_status():
    ranker = CharacterRelevanceRanker()
    assert ranker.score(_profile("p", CharacterRole.PROTAGONIST, last=10), 12) == 150
    assert ranker.score(_profile("m", CharacterRole.MAJOR, last=1), 15) == 90
    assert ranker.score(_profile("n", status=ActivityStatus.INACTIVE), 5) == 20


def test_score_never_negative():
    ranker = CharacterRelevanceRanker()
    stale = _profile("old", last=1, status=ActivityStatus.INACTIVE)
    assert ranker.score(stale, 100) == 0


def test_rank_is_stable_for_equal_scores():
    ranker = CharacterRelevanceRanker()
    people = [_profile("a"), _profile("b"), _profile("c", CharacterRole.MAJOR), _profile("d")]
    ranked = ranker.rank(people, 1)
    assert [r.profile.name for r in ranked] == ["c", "a", "b", "d"]
    assert all(r.score >= 0 for r in ranked)


def test_find_inactive_skips_absent_and_unseen():
    ranker = CharacterRelevanceRanker()
    people = [
        _profile("gone", last=1),
        _profile("dead", last=1, status=ActivityStatus.DECEASED),
        _profile("lost", last=1, status=ActivityStatus.MISSING),
        _profile("never"),
        _profile("recent", last=40),
    ]
    assert ranker.find_inactive(people, 50) == ["gone"]
    assert ranker.find_inactive(people, 50, threshold_chapters=5) == ["gone", "recent"]


def test_reactivation_only_for_major_characters():
    ranker = CharacterRelevanceRanker()
    people = [_profile("Zhao", CharacterRole.MAJOR, last=2), _profile("extra", last=2)]
    suggestions = ranker.reactivation_suggestions(people, 60)
    assert len(suggestions) == 1
    assert suggestions[0].startswith("Zhao (major) has been absent for 58 chapters")


def test_render_roster_limits_characters_and_relationships():
    ranker = CharacterRelevanceRanker()
    people = [
        _profile("Lin", CharacterRole.PROTAGONIST, last=3, traits=["stubborn"],
                 relationships={"Mo": "mentor", "Su": "rival", "Qi": "friend"}),
        _profile("Mo", CharacterRole.MAJOR, key_events=["fled", "returned"]),
        _profile("Su"),
    ]
    roster = ranker.render_roster(people, 4, limit=2, relationship_lines=1)
    lines = roster.splitlines()
    assert lines[0] == "Characters (by relevance):"
    assert lines[1] == "- Lin (protagonist, active) [stubborn]"
    assert lines[2] == "- Mo (major, active) - latest: returned"
    assert "Su (minor" not in roster
    assert "- Lin: Mo (mentor), Su (rival)" in lines
    assert ranker.render_roster([], 1) == "No character records yet."
