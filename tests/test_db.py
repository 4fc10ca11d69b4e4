"""sqlite store: rosters, judges, statuses and score upserts."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from owarai.db import Forbidden, NotFound
from owarai.models import ScoreInput

T0 = datetime(2025, 12, 21, 19, 0, tzinfo=timezone.utc)


def score_input(judge_id, performer, value):
    return ScoreInput(
        judge_id=judge_id,
        performer_id=performer.id,
        round_id=performer.round_id,
        competition_id=performer.competition_id,
        score=value,
    )


@pytest.fixture
def first_round(store, competition):
    return store.list_rounds(competition.id)[0]


@pytest.fixture
def judge(store):
    j, _token = store.join("Aki")
    return j


class TestCompetitions:
    def test_create_builds_rounds(self, store, competition):
        rounds = store.list_rounds(competition.id)
        assert [r.name for r in rounds] == ["1st round", "Final round"]
        assert [r.round_order for r in rounds] == [1, 2]
        assert competition.status == "upcoming"
        assert len(competition.join_code) > 0

    def test_unknown_type(self, store):
        with pytest.raises(ValueError):
            store.create_competition("nope", 2025, "x", "pw")

    def test_join_code_lookup(self, store, competition):
        found = store.get_competition_by_join_code(competition.join_code.lower())
        assert found.id == competition.id
        with pytest.raises(NotFound):
            store.get_competition_by_join_code("missing")

    def test_require_admin(self, store, competition):
        store.require_admin(competition.id, "secret")
        with pytest.raises(Forbidden):
            store.require_admin(competition.id, "wrong")
        with pytest.raises(NotFound):
            store.require_admin(999, "secret")

    def test_set_status(self, store, competition):
        assert store.set_status(competition.id, "closed").status == "closed"


class TestPerformers:
    def test_roster_in_performance_order(self, store, first_round):
        out = store.set_performers(first_round.id, ["Reiwa Roman", " Yamaguchi ", "", "Reiwa Roman", "Shinkigeki"])
        assert [p.name for p in out] == ["Reiwa Roman", "Yamaguchi", "Shinkigeki"]
        assert [p.performance_order for p in out] == [1, 2, 3]

    def test_replacing_roster_drops_scores(self, store, competition, first_round, judge):
        a, b = store.set_performers(first_round.id, ["A", "B"])
        store.upsert_score(score_input(judge.id, a, 80))
        store.upsert_score(score_input(judge.id, b, 70))

        out = store.set_performers(first_round.id, ["B", "C"])
        assert [p.name for p in out] == ["B", "C"]
        assert out[0].id == b.id
        assert [s.performer_id for s in store.list_scores(competition.id)] == [b.id]

    def test_delete_performer_cascades(self, store, competition, first_round, judge):
        (a,) = store.set_performers(first_round.id, ["A"])
        store.upsert_score(score_input(judge.id, a, 80))
        store.delete_performer(a.id)
        assert store.list_scores(competition.id) == []
        with pytest.raises(NotFound):
            store.get_performer(a.id)

    def test_final_round_entry(self, store, competition):
        first, final = store.list_rounds(competition.id)
        store.set_performers(final.id, ["Late entry"])
        added = store.ensure_final_round_performer(competition.id, "Team X")
        again = store.ensure_final_round_performer(competition.id, "Team X")
        assert added.id == again.id
        assert added.round_id == final.id
        assert added.performance_order is None
        # nulls last
        assert [p.name for p in store.list_performers(final.id)] == ["Late entry", "Team X"]

    def test_competition_performers_span_rounds(self, store, competition):
        first, final = store.list_rounds(competition.id)
        store.set_performers(first.id, ["A", "B"])
        store.ensure_final_round_performer(competition.id, "A")
        names = [(p.round_id, p.name) for p in store.list_competition_performers(competition.id)]
        assert names == [(first.id, "A"), (first.id, "B"), (final.id, "A")]


class TestJudges:
    def test_rejoin_reissues_token(self, store):
        j1, t1 = store.join("Aki")
        j2, t2 = store.join("Aki")
        assert j1.id == j2.id
        assert t1 != t2
        assert store.require_judge(j1.id, t2).name == "Aki"
        with pytest.raises(Forbidden):
            store.require_judge(j1.id, t1)

    def test_list_judges(self, store):
        store.join("Aki")
        store.join("Ben")
        store.join("Aki")
        assert [j.name for j in store.list_judges()] == ["Aki", "Ben"]

    def test_blank_name(self, store):
        with pytest.raises(ValueError):
            store.join("   ")

    def test_status_lifecycle(self, store, competition, judge):
        assert store.get_status(judge.id, competition.id) is None
        store.ensure_status(judge.id, competition.id)
        store.set_viewing_mode(judge.id, competition.id, "delayed")
        # ensure_status does not reset an existing mode
        assert store.ensure_status(judge.id, competition.id).viewing_mode == "delayed"

        done = store.complete_scoring(judge.id, competition.id)
        assert done.has_completed_scoring is True
        assert done.completed_at is not None
        assert done.viewing_mode == "delayed"
        assert [s.judge_id for s in store.list_judge_status(competition.id)] == [judge.id]
        assert [j.id for j in store.competition_judges(competition.id)] == [judge.id]


class TestScores:
    def test_upsert_keeps_one_record(self, store, competition, first_round, judge):
        (a,) = store.set_performers(first_round.id, ["A"])
        store.upsert_score(score_input(judge.id, a, 60), scored_at=T0)
        store.upsert_score(score_input(judge.id, a, 88), scored_at=T0 + timedelta(minutes=3))

        scores = store.list_scores(competition.id)
        assert len(scores) == 1
        assert scores[0].score == 88
        assert scores[0].scored_at == T0 + timedelta(minutes=3)

    def test_older_write_does_not_rewind(self, store, competition, first_round, judge):
        (a,) = store.set_performers(first_round.id, ["A"])
        store.upsert_score(score_input(judge.id, a, 88), scored_at=T0 + timedelta(minutes=3))
        kept = store.upsert_score(score_input(judge.id, a, 60), scored_at=T0)

        assert kept.score == 88
        assert kept.scored_at == T0 + timedelta(minutes=3)
        (saved,) = store.list_scores(competition.id)
        assert (saved.score, saved.scored_at) == (88, T0 + timedelta(minutes=3))

    def test_same_timestamp_overwrites(self, store, competition, first_round, judge):
        (a,) = store.set_performers(first_round.id, ["A"])
        store.upsert_score(score_input(judge.id, a, 50), scored_at=T0)
        assert store.upsert_score(score_input(judge.id, a, 75), scored_at=T0).score == 75

    def test_comment_and_mode_round_trip(self, store, competition, first_round, judge):
        (a,) = store.set_performers(first_round.id, ["A"])
        record = score_input(judge.id, a, 91).model_copy(update={"comment": "great", "is_realtime": False})
        store.upsert_score(record)
        (saved,) = store.list_scores(competition.id)
        assert saved.comment == "great"
        assert saved.is_realtime is False

    @pytest.mark.parametrize("value", [-1, 101])
    def test_out_of_range_rejected_at_input(self, value):
        with pytest.raises(ValidationError):
            ScoreInput(judge_id=1, performer_id=1, round_id=1, competition_id=1, score=value)

    def test_bounds_accepted(self):
        for value in (0, 100):
            assert ScoreInput(judge_id=1, performer_id=1, round_id=1, competition_id=1, score=value).score == value
