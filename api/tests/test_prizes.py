import random
import re
from collections import Counter
from datetime import timedelta

import pytest

from spinwheel.errors import ConfigurationError, ExhaustionError
from spinwheel.models import Prize, PrizeRule
from spinwheel.prizes import (
    daily_win_limit, generate_redemption_code, get_available_prizes, is_winning_prize,
    select_prize, weighted_choice,
)


def _prize(name, type="Airtime"):
    return Prize(name=name, type=type)


def test_is_winning_prize():
    assert is_winning_prize(_prize("N200 Airtime"))
    assert not is_winning_prize(_prize("Try Again", type="No Win"))
    assert not is_winning_prize(_prize("Better luck", type="lossprize"))
    assert not is_winning_prize(_prize("  try again ", type="Merchandise"))


def test_daily_win_limit_uses_smallest_positive_cap():
    rules = [PrizeRule(max_per_day=None), PrizeRule(max_per_day=0), PrizeRule(max_per_day=5),
             PrizeRule(max_per_day=3)]
    assert daily_win_limit(rules) == 3
    assert daily_win_limit([PrizeRule(max_per_day=None), PrizeRule(max_per_day=0)]) is None
    assert daily_win_limit([]) is None


def test_weighted_choice_converges_to_weights():
    a, b, c = _prize("A"), _prize("B"), _prize("C")
    rng = random.Random(1234)
    draws = 20_000
    counts = Counter(weighted_choice([(a, 0.2), (b, 0.5), (c, 0.3)], rng) for _ in range(draws))
    assert counts[a] / draws == pytest.approx(0.2, abs=0.02)
    assert counts[b] / draws == pytest.approx(0.5, abs=0.02)
    assert counts[c] / draws == pytest.approx(0.3, abs=0.02)


def test_weighted_choice_skips_zero_weight_and_falls_back_to_uniform():
    a, b = _prize("A"), _prize("B")
    rng = random.Random(7)
    assert {weighted_choice([(a, 0.0), (b, 0.4)], rng) for _ in range(200)} == {b}
    assert {weighted_choice([(a, 0.0), (b, 0.0)], rng) for _ in range(200)} == {a, b}
    with pytest.raises(ValueError):
        weighted_choice([], rng)


def test_select_prize_respects_configured_odds(db, world, add_prize):
    airtime = add_prize(world.campaign, "Airtime", probability=0.25)
    loss = add_prize(world.campaign, "Try Again", type="No Win", probability=0.75)
    rng = random.Random(99)
    draws = 4000
    counts = Counter(
        select_prize(db, world.campaign.id, world.location.id, now=world.now, rng=rng).id
        for _ in range(draws)
    )
    assert counts[airtime.id] / draws == pytest.approx(0.25, abs=0.03)
    assert counts[loss.id] / draws == pytest.approx(0.75, abs=0.03)


def test_capped_prize_weight_moves_to_the_rest(db, world, add_prize, record_spin):
    # A is spent after one award; every later draw lands on B
    a = add_prize(world.campaign, "Prize A", probability=0.5, max_total=1)
    b = add_prize(world.campaign, "Prize B", probability=0.5)
    record_spin(world.user, world.campaign, world.location, a)

    rng = random.Random(5)
    picks = {
        select_prize(db, world.campaign.id, world.location.id, now=world.now, rng=rng).id
        for _ in range(200)
    }
    assert picks == {b.id}


def test_zero_max_total_disables_prize(db, world, add_prize):
    add_prize(world.campaign, "Prize A", probability=1.0, max_total=0)
    with pytest.raises(ExhaustionError) as exc:
        select_prize(db, world.campaign.id, world.location.id, now=world.now)
    assert exc.value.code == "PRIZES_EXHAUSTED"
    assert get_available_prizes(db, world.campaign.id, world.location.id, now=world.now) == []


def test_zero_daily_cap_means_unlimited(db, world, add_prize, record_spin):
    a = add_prize(world.campaign, "Prize A", probability=1.0, max_per_day=0)
    record_spin(world.user, world.campaign, world.location, a)
    assert get_available_prizes(db, world.campaign.id, world.location.id, now=world.now) == [a]
    assert select_prize(db, world.campaign.id, world.location.id, now=world.now).id == a.id


def test_all_prizes_capped_is_exhaustion(db, world, add_prize, record_spin):
    a = add_prize(world.campaign, "Prize A", probability=1.0, max_total=1)
    record_spin(world.user, world.campaign, world.location, a)
    with pytest.raises(ExhaustionError) as exc:
        select_prize(db, world.campaign.id, world.location.id, now=world.now)
    assert exc.value.code == "PRIZES_EXHAUSTED"
    assert not isinstance(exc.value, ConfigurationError)


def test_daily_cap_resets_on_a_new_day(db, world, add_prize, record_spin):
    a = add_prize(world.campaign, "Prize A", probability=1.0, max_per_day=1)
    record_spin(world.user, world.campaign, world.location, a, at=world.now - timedelta(days=1))
    assert get_available_prizes(db, world.campaign.id, world.location.id, now=world.now) == [a]

    record_spin(world.user, world.campaign, world.location, a, at=world.now)
    assert get_available_prizes(db, world.campaign.id, world.location.id, now=world.now) == []


def test_daily_cap_counts_campaign_wide(db, world, make_location, add_prize, record_spin):
    other_store = make_location(name="Lekki", lat=6.4474, lon=3.4647)
    a = add_prize(world.campaign, "Prize A", probability=0.5, max_per_day=1)
    b = add_prize(world.campaign, "Prize B", probability=0.5)
    record_spin(world.user, world.campaign, other_store, a)

    available = get_available_prizes(db, world.campaign.id, world.location.id, now=world.now)
    assert available == [b]


def test_losses_do_not_count_against_caps(db, world, add_prize, record_spin):
    a = add_prize(world.campaign, "Prize A", probability=1.0, max_total=1, max_per_day=1)
    record_spin(world.user, world.campaign, world.location, a, is_win=False)
    assert get_available_prizes(db, world.campaign.id, world.location.id, now=world.now) == [a]


def test_campaign_without_rules(db, world):
    with pytest.raises(ConfigurationError) as exc:
        select_prize(db, world.campaign.id, world.location.id, now=world.now)
    assert exc.value.code == "NO_PRIZE_RULES"
    assert exc.value.status_code == 503
    assert get_available_prizes(db, world.campaign.id, world.location.id) == []


def test_campaign_with_only_inactive_prizes(db, world, add_prize):
    add_prize(world.campaign, "Retired", probability=1.0, is_active=False)
    with pytest.raises(ConfigurationError) as exc:
        select_prize(db, world.campaign.id, world.location.id, now=world.now)
    assert exc.value.code == "NO_ACTIVE_PRIZES"


def test_available_prizes_follow_rule_order(db, world, add_prize):
    first = add_prize(world.campaign, "Zebra Pack", probability=0.1)
    second = add_prize(world.campaign, "Apple Pack", probability=0.9)
    assert get_available_prizes(db, world.campaign.id, world.location.id) == [first, second]


def test_redemption_code_format():
    code = generate_redemption_code()
    assert re.fullmatch(r"PO-[0-9A-F]{8}", code)
    assert generate_redemption_code() != code
