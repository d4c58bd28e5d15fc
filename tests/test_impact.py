import pytest

from tekton_agent.core import impact
from tests.fakes.fake_collaborators import make_change


def test_empty_change_set_scores_zero():
    assert impact.score([]) == 0.0
    assert impact.score(None) == 0.0


def test_security_and_service_account_reach_exactly_point_seven():
    changes = [make_change(impact_areas=["security", "serviceAccount"])]
    assert impact.score(changes) == 0.7


def test_network_only_stays_well_below_review_threshold():
    changes = [make_change(impact_areas=["network"])]
    assert impact.score(changes) == pytest.approx(0.2)


def test_medium_areas_are_capped_across_many_changes():
    changes = [
        make_change(change_id=f"c{i}", impact_areas=["network", "storage", "resources"])
        for i in range(10)
    ]
    assert impact.score(changes) < 0.3


def test_long_description_adds_complexity_surcharge():
    short = [make_change(impact_areas=["network"], description="x" * 200)]
    long = [make_change(impact_areas=["network"], description="x" * 201)]
    assert impact.score(short) == pytest.approx(0.2)
    assert impact.score(long) == pytest.approx(0.4)


def test_score_is_clamped_to_one():
    changes = [
        make_change(change_id=f"c{i}", impact_areas=["security", "rbac"], description="y" * 300)
        for i in range(5)
    ]
    assert impact.score(changes) == 1.0


def test_duplicate_areas_within_a_change_count_once():
    once = [make_change(impact_areas=["security"])]
    twice = [make_change(impact_areas=["security", "SECURITY", " security "])]
    assert impact.score(once) == impact.score(twice)


@pytest.mark.parametrize("alias, canonical", [
    ("service_account", "serviceaccount"),
    ("Networking", "network"),
    ("workspaces", "storage"),
    ("permissions", "rbac"),
])
def test_area_aliases_normalize(alias, canonical):
    assert impact.normalize_area(alias) == canonical


def test_unknown_areas_contribute_nothing():
    assert impact.score([make_change(impact_areas=["docs", "ui"])]) == 0.0
