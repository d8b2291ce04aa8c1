"""
Unit tests for the group stage: draws, results and standings.
"""
import random
import pytest
import sys
import os
from itertools import combinations

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.models import CupHit, Group, InvalidTransition, Match, Result, Standing, Team
from core.groups import (
    advancing_teams, all_groups_complete, apply_result, calculate_standings,
    generate_groups, group_name, is_group_complete,
)


def make_group(names, advancing_count=2, rosters=None):
    """Build a group with a fixed team order (no shuffle)."""
    rosters = rosters or {}
    teams = [Team(n, rosters.get(n)) for n in names]
    matches = [Match(f"gA-{i}-{j}", t1, t2) for (i, t1), (j, t2) in combinations(enumerate(teams), 2)]
    standings = [Standing(t.name, t.players) for t in teams]
    return Group('A', teams, matches, standings, advancing_count)


def match_index(group, a, b):
    for i, match in enumerate(group.matches):
        if {match.p1.name, match.p2.name} == {a, b}:
            return i
    raise AssertionError(f'no match {a} vs {b}')


def play(group, winner, loser, win_type='regular', cups=(6, 3), hits=()):
    return apply_result(group, match_index(group, winner, loser),
                        Result(winner, loser, win_type, cups, tuple(hits)))


def standing(group, name):
    return next(s for s in group.standings if s.name == name)


class TestGenerateGroups:
    """Tests for drawing groups."""

    def test_group_names(self):
        assert [group_name(i) for i in range(3)] == ['A', 'B', 'C']

    def test_six_teams_two_groups(self, six_names):
        """Six teams split into two groups of three with three matches each."""
        teams = [Team(n) for n in six_names]
        groups = generate_groups(teams, 2, 2, random.Random(7))
        assert [g.name for g in groups] == ['A', 'B']
        assert [len(g.teams) for g in groups] == [3, 3]
        assert [len(g.matches) for g in groups] == [3, 3]
        drawn = [t.name for g in groups for t in g.teams]
        assert sorted(drawn) == sorted(six_names)

    def test_uneven_split(self, six_names):
        """Group sizes differ by at most one."""
        teams = [Team(n) for n in six_names + ['Geckos']]
        groups = generate_groups(teams, 2, 2, random.Random(1))
        assert sorted(len(g.teams) for g in groups) == [3, 4]

    def test_round_robin_pairs(self, six_names):
        """A group of n plays n(n-1)/2 unique pairs."""
        teams = [Team(n) for n in six_names]
        group = generate_groups(teams, 1, 2, random.Random(3))[0]
        pairs = {frozenset((m.p1.name, m.p2.name)) for m in group.matches}
        assert len(group.matches) == 15
        assert len(pairs) == 15
        assert len({m.id for m in group.matches}) == 15

    def test_standings_start_empty(self, six_names):
        group = generate_groups([Team(n) for n in six_names], 2, 2, random.Random(2))[0]
        assert all(s.points == 0 and s.games_played == 0 for s in group.standings)

    def test_same_seed_same_draw(self, six_names):
        teams = [Team(n) for n in six_names]
        first = generate_groups(teams, 2, 2, random.Random(42))
        second = generate_groups(teams, 2, 2, random.Random(42))
        assert [g.to_dict() for g in first] == [g.to_dict() for g in second]

    def test_too_few_teams(self):
        with pytest.raises(InvalidTransition):
            generate_groups([Team('A'), Team('B'), Team('C')], 2, 1)


class TestApplyResult:
    """Tests for recording results and the points table."""

    def test_shooter_win(self):
        """A shooter win is worth 3 points and counts as a shooter win."""
        group = play(make_group(['A', 'B', 'C']), 'A', 'B', 'shooter', (4, 0))
        a, b = standing(group, 'A'), standing(group, 'B')
        assert (a.points, a.wins, a.shooter_wins) == (3, 1, 1)
        assert (a.cups_hit, a.cups_lost, a.cup_diff) == (6, 2, 4)
        assert (b.points, b.losses) == (0, 1)
        assert b.cup_diff == -4

    def test_overtime_win(self):
        """An overtime win gives 2 points and the loser 1."""
        group = play(make_group(['A', 'B', 'C']), 'A', 'B', 'ot', (5, 4))
        a, b = standing(group, 'A'), standing(group, 'B')
        assert (a.points, a.ot_wins, a.wins) == (2, 1, 0)
        assert (b.points, b.ot_losses, b.losses) == (1, 1, 0)

    def test_regular_win(self):
        group = play(make_group(['A', 'B', 'C']), 'B', 'C', 'regular', (6, 3))
        b = standing(group, 'B')
        assert (b.points, b.wins, b.shooter_wins, b.cup_diff) == (3, 1, 0, 3)
        assert b.games_played == 1

    def test_input_group_unchanged(self):
        group = make_group(['A', 'B', 'C'])
        play(group, 'A', 'B')
        assert group.matches[0].winner is None
        assert all(s.points == 0 for s in group.standings)

    def test_already_decided(self):
        group = play(make_group(['A', 'B', 'C']), 'A', 'B')
        with pytest.raises(InvalidTransition):
            play(group, 'B', 'A')

    def test_wrong_teams(self):
        group = make_group(['A', 'B', 'C'])
        with pytest.raises(InvalidTransition):
            apply_result(group, match_index(group, 'A', 'B'), Result('A', 'C', 'regular', (6, 3)))

    def test_bad_match_index(self):
        with pytest.raises(InvalidTransition):
            apply_result(make_group(['A', 'B', 'C']), 9, Result('A', 'B', 'regular', (6, 3)))

    def test_player_stats(self):
        """Hits are credited per player and every roster member gets a game."""
        group = make_group(['Red', 'Blue', 'Gold'], rosters={'Red': ['Ann', 'Bob'], 'Blue': ['Cat']})
        hits = [CupHit('Ann', 'Red', 0, 1.0), CupHit('Unknown', 'Red', 1, 2.0), CupHit('Cat', 'Blue', 3, 3.0)]
        group = play(group, 'Red', 'Blue', 'regular', (5, 4), hits)
        red = standing(group, 'Red')
        assert red.player_stats['Ann'] == {'cupsHit': 1, 'gamesPlayed': 1}
        assert red.player_stats['Bob'] == {'cupsHit': 0, 'gamesPlayed': 1}
        assert red.player_stats['Unknown'] == {'cupsHit': 1, 'gamesPlayed': 0}
        assert standing(group, 'Blue').player_stats['Cat'] == {'cupsHit': 1, 'gamesPlayed': 1}


class TestStandingsOrder:
    """Tests for the ranking tie-breakers."""

    def test_points_first(self):
        group = play(make_group(['A', 'B', 'C']), 'C', 'A')
        assert group.standings[0].name == 'C'

    def test_shooter_wins_beat_cup_diff(self):
        """Equal points are split by shooter wins before cup differential."""
        group = make_group(['B', 'A', 'C'])
        group = play(group, 'A', 'C', 'shooter', (1, 0))
        group = play(group, 'B', 'C', 'regular', (6, 3))
        assert [s.name for s in group.standings] == ['A', 'B', 'C']

    def test_cup_diff_breaks_tie(self):
        """Equal points and shooter wins are split by cup differential."""
        group = make_group(['B', 'A', 'C'])
        group = play(group, 'A', 'C', 'regular', (6, 1))
        group = play(group, 'B', 'C', 'regular', (6, 4))
        assert [s.name for s in group.standings] == ['A', 'B', 'C']
        assert standing(group, 'A').cup_diff == 5
        assert standing(group, 'B').cup_diff == 2

    def test_head_to_head_breaks_tie(self):
        """Teams level on everything else are ordered by their own match."""
        group = make_group(['B', 'A', 'C', 'D'])
        group = play(group, 'A', 'B', 'regular', (6, 5))
        group = play(group, 'B', 'C', 'regular', (6, 4))
        a, b = standing(group, 'A'), standing(group, 'B')
        assert (a.points, a.cup_diff) == (b.points, b.cup_diff)
        assert [s.name for s in group.standings] == ['A', 'B', 'D', 'C']

    def test_unsplittable_tie_keeps_group_order(self):
        group = make_group(['C', 'B', 'A'])
        assert [s.name for s in calculate_standings(group)] == ['C', 'B', 'A']

    def test_reproducible(self):
        """The same results always give the same table."""
        results = [('A', 'B', 'ot', (3, 2)), ('C', 'A', 'regular', (4, 1)), ('B', 'C', 'shooter', (2, 0))]
        tables = []
        for _ in range(2):
            group = make_group(['A', 'B', 'C'])
            for winner, loser, win_type, cups in results:
                group = play(group, winner, loser, win_type, cups)
            tables.append([s.to_dict() for s in group.standings])
        assert tables[0] == tables[1]


class TestAdvancement:
    """Tests for group completion and advancing teams."""

    def test_advancing_teams(self):
        group = make_group(['A', 'B', 'C'], advancing_count=2)
        group = play(group, 'C', 'A')
        group = play(group, 'C', 'B')
        group = play(group, 'B', 'A')
        assert [t.name for t in advancing_teams(group)] == ['C', 'B']
        assert is_group_complete(group)

    def test_incomplete(self):
        group = play(make_group(['A', 'B', 'C']), 'A', 'B')
        assert not is_group_complete(group)
        assert not all_groups_complete([group])
        assert not all_groups_complete([])
