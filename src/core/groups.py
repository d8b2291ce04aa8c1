"""
Group stage: round-robin schedules and standings.

Ranking: points -> shooter wins -> cup differential -> head-to-head
"""
import copy
import logging
import random
from functools import cmp_to_key
from itertools import combinations
from typing import List, Dict, Optional

from .models import (
    CUPS_PER_SIDE, WIN_OT, WIN_SHOOTER, WIN_TYPES,
    Group, InvalidTransition, Match, Result, Standing, Team, team_name,
)

logger = logging.getLogger(__name__)

# (winner points, loser points) per win type
POINTS_TABLE = {
    'regular': (3, 0),
    'ot': (2, 1),
    'shooter': (3, 0),
}


def group_name(index: int) -> str:
    """Group names run A, B, C, ..."""
    return chr(ord('A') + index)


def generate_groups(teams: List[Team], num_groups: int, advancing_count: int,
                    rng: Optional[random.Random] = None) -> List[Group]:
    """
    Shuffle teams into ``num_groups`` groups and build each group's
    round-robin schedule and empty standings.

    Teams are dealt by index modulo the group count, so group sizes differ
    by at most one.
    """
    if num_groups < 1:
        raise InvalidTransition('At least one group is required')
    if len(teams) < num_groups * 2:
        raise InvalidTransition(f'{len(teams)} teams cannot fill {num_groups} groups')

    rng = rng or random.Random()
    shuffled = list(teams)
    rng.shuffle(shuffled)

    groups = [Group(group_name(i), advancing_count=advancing_count) for i in range(num_groups)]
    for index, team in enumerate(shuffled):
        groups[index % num_groups].teams.append(team)

    for group in groups:
        group.standings = [Standing(team.name, team.players) for team in group.teams]
        for (i, t1), (j, t2) in combinations(enumerate(group.teams), 2):
            group.matches.append(Match(f"g{group.name}-{i}-{j}", t1, t2))
        logger.debug(f'Group {group.name}: {len(group.teams)} teams, {len(group.matches)} matches')

    return groups


def apply_result(group: Group, match_index: int, result: Result) -> Group:
    """
    Record ``result`` for the group's ``match_index`` match and recompute the
    standings. Returns a new Group; ``group`` is left unchanged.
    """
    if not 0 <= match_index < len(group.matches):
        raise InvalidTransition(f'Group {group.name} has no match {match_index}')
    match = group.matches[match_index]
    if match.winner is not None:
        raise InvalidTransition(f'Match {match.id} has already been played')
    if result.win_type not in WIN_TYPES:
        raise InvalidTransition(f'Unknown win type: {result.win_type!r}')
    if {result.winner, result.loser} != {team_name(match.p1), team_name(match.p2)}:
        raise InvalidTransition(
            f'Result {result.winner} vs {result.loser} does not belong to match {match.id}')

    new_group = copy.deepcopy(group)
    new_match = new_group.matches[match_index]
    new_match.record(result)
    new_group.standings = calculate_standings(new_group)
    logger.info(f'Group {group.name}: {result.winner} beat {result.loser} ({result.win_type})')
    return new_group


def calculate_standings(group: Group) -> List[Standing]:
    """
    Rebuild the standings from every decided match of the group.

    Rows start in group team order so ties that nothing can split keep a
    reproducible order.
    """
    by_name = {team.name: Standing(team.name, team.players) for team in group.teams}
    rosters = {team.name: team.players for team in group.teams}

    for match in group.matches:
        if match.winner is None:
            continue
        winner = by_name[match.winner.name]
        loser = by_name[match.loser.name]
        cups = match.cups_remaining or {'winner': 0, 'loser': 0}
        _apply_points(winner, loser, match.win_type)

        winner.games_played += 1
        loser.games_played += 1
        _apply_cups(winner, own_remaining=cups['winner'], opponent_remaining=cups['loser'])
        _apply_cups(loser, own_remaining=cups['loser'], opponent_remaining=cups['winner'])

        for standing in (winner, loser):
            for player in rosters[standing.name]:
                _player_stats(standing, player)['gamesPlayed'] += 1
        for hit in match.cup_hits:
            if hit.team in by_name:
                _player_stats(by_name[hit.team], hit.player)['cupsHit'] += 1

    head_to_head = _head_to_head(group.matches)

    def compare(a, b):
        for attr in ('points', 'shooter_wins', 'cup_diff'):
            diff = getattr(b, attr) - getattr(a, attr)
            if diff:
                return diff
        winner = head_to_head.get(frozenset((a.name, b.name)))
        if winner == a.name:
            return -1
        if winner == b.name:
            return 1
        return 0

    return sorted((by_name[team.name] for team in group.teams), key=cmp_to_key(compare))


def advancing_teams(group: Group) -> List[Team]:
    """Teams currently in the advancing places of the group."""
    teams = {team.name: team for team in group.teams}
    return [teams[s.name] for s in group.standings[:group.advancing_count]]


def is_group_complete(group: Group) -> bool:
    return all(m.winner is not None for m in group.matches)


def all_groups_complete(groups: List[Group]) -> bool:
    return bool(groups) and all(is_group_complete(g) for g in groups)


def _apply_points(winner: Standing, loser: Standing, win_type: str):
    win_points, loss_points = POINTS_TABLE.get(win_type, POINTS_TABLE['regular'])
    winner.points += win_points
    loser.points += loss_points
    if win_type == WIN_OT:
        winner.ot_wins += 1
        loser.ot_losses += 1
        return
    winner.wins += 1
    loser.losses += 1
    if win_type == WIN_SHOOTER:
        winner.shooter_wins += 1


def _apply_cups(standing: Standing, own_remaining: int, opponent_remaining: int):
    hit = CUPS_PER_SIDE - opponent_remaining
    lost = CUPS_PER_SIDE - own_remaining
    standing.cups_hit += hit
    standing.cups_lost += lost
    standing.cup_diff += hit - lost


def _player_stats(standing: Standing, player: str) -> Dict:
    return standing.player_stats.setdefault(player, {'cupsHit': 0, 'gamesPlayed': 0})


def _head_to_head(matches: List[Match]) -> Dict[frozenset, str]:
    """Winner of the decided match for each pair of teams."""
    results = {}
    for match in matches:
        if match.winner is not None and match.p1 is not None and match.p2 is not None:
            results[frozenset((match.p1.name, match.p2.name))] = match.winner.name
    return results
