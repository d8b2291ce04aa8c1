"""
Single elimination bracket generation and management.
"""
import copy
import logging
import math
from typing import List, Dict, Tuple, Optional

from .groups import advancing_teams
from .models import (
    BYE_NAME, BracketMatchRef, Group, InvalidTransition, Match, Result,
    Team, ThirdPlaceMatch, ThirdPlaceRef, team_name,
)

logger = logging.getLogger(__name__)


class Bracket:
    def __init__(self, rounds=None, third_place=None, champion=None):
        self.rounds = rounds if rounds is not None else []  # [[Match, ...], ...]
        self.third_place = third_place
        self.champion = champion

    def __repr__(self):
        return f"Bracket(rounds={[len(r) for r in self.rounds]}, champion={team_name(self.champion)})"

    @property
    def final(self) -> Optional[Match]:
        if not self.rounds:
            return None
        return self.rounds[-1][0]

    def to_dict(self):
        return {
            'rounds': [[m.to_dict() for m in r] for r in self.rounds],
            'thirdPlaceMatch': self.third_place.to_dict() if self.third_place else None,
            'champion': team_name(self.champion),
        }

    @classmethod
    def from_dict(cls, data):
        rounds = [[Match.from_dict(m) for m in r] for r in data.get('rounds', [])]
        bracket = cls(rounds, ThirdPlaceMatch.from_dict(data.get('thirdPlaceMatch')))
        if data.get('champion') and bracket.final is not None:
            bracket.champion = bracket.final.winner
        return bracket


def get_round_name(matches_in_round: int) -> str:
    """Get the name of a round based on the number of matches in it."""
    if matches_in_round == 1:
        return "Final"
    elif matches_in_round == 2:
        return "Semifinal"
    elif matches_in_round == 4:
        return "Quarterfinal"
    else:
        return f"Round of {matches_in_round * 2}"


def generate_bracket(teams: List[Team]) -> Bracket:
    """
    Build a bracket by pairing the list in order: 1st vs 2nd, 3rd vs 4th, ...

    An odd list gets a synthetic Bye appended; the team drawn against it
    goes straight through. Later rounds start empty and are filled as
    matches are decided.
    """
    if len(teams) < 2:
        raise InvalidTransition('A bracket needs at least 2 teams')

    entries = list(teams)
    if len(entries) % 2 != 0:
        entries.append(Team(BYE_NAME))

    first_round = []
    for i in range(0, len(entries), 2):
        match = Match(f"r0-m{i // 2}", entries[i], entries[i + 1])
        if match.p2.is_bye:
            match.winner = match.p1
            match.is_bye = True
        first_round.append(match)

    rounds = [first_round]
    round_size = len(first_round)
    round_index = 1
    while round_size > 1:
        round_size = math.ceil(round_size / 2)
        rounds.append([Match(f"r{round_index}-m{i}") for i in range(round_size)])
        round_index += 1

    bracket = Bracket(rounds)
    for i, match in enumerate(first_round):
        if match.winner is not None:
            _propagate_winner(bracket, 0, i)

    logger.info(f'Bracket generated: {len(teams)} teams, {len(rounds)} rounds')
    return bracket


def advance(bracket: Bracket, round_index: int, match_index: int, result: Result) -> Bracket:
    """
    Record a bracket result and move the winner on.

    Semifinal losers are routed into the third-place match. Deciding the
    final crowns the champion. Returns a new Bracket.
    """
    match = _get_match(bracket, round_index, match_index)
    if not match.is_playable:
        raise InvalidTransition(f'Match {match.id} is not ready to be played')
    _check_result_teams(match.id, match.p1, match.p2, result)

    new_bracket = copy.deepcopy(bracket)
    new_match = new_bracket.rounds[round_index][match_index]
    new_match.record(result)

    if round_index == len(new_bracket.rounds) - 2:
        _route_to_third_place(new_bracket, new_match.loser)

    _propagate_winner(new_bracket, round_index, match_index)
    return new_bracket


def record_third_place(bracket: Bracket, result: Result) -> Bracket:
    """Record the result of the third-place match."""
    third = bracket.third_place
    if third is None or not third.is_playable:
        raise InvalidTransition('The third-place match is not ready to be played')
    _check_result_teams('third place', third.p1, third.p2, result)

    new_bracket = copy.deepcopy(bracket)
    new_third = new_bracket.third_place
    new_third.winner = new_third.p1 if new_third.p1.name == result.winner else new_third.p2
    logger.info(f'Third place: {result.winner}')
    return new_bracket


def seed_from_groups(groups: List[Group]) -> List[Team]:
    """
    Order the teams advancing from the group stage for generate_bracket.

    Two groups with two advancing each are crossed (A1 vs B2, B1 vs A2).
    Any other layout is concatenated group by group, which can pair two
    teams from the same group in the first round.
    """
    if len(groups) == 2 and groups[0].advancing_count == 2 and groups[1].advancing_count == 2:
        a1, a2 = advancing_teams(groups[0])
        b1, b2 = advancing_teams(groups[1])
        return [a1, b2, b1, a2]

    seeded = []
    for group in groups:
        seeded.extend(advancing_teams(group))
    return seeded


def playable_matches(bracket: Bracket) -> List[Tuple[object, object]]:
    """(reference, match) for every bracket match that can be played now."""
    playable = []
    for r, round_matches in enumerate(bracket.rounds):
        for i, match in enumerate(round_matches):
            if match.is_playable:
                playable.append((BracketMatchRef(r, i), match))
    if bracket.third_place is not None and bracket.third_place.is_playable:
        playable.append((ThirdPlaceRef(), bracket.third_place))
    return playable


def is_bracket_complete(bracket: Bracket) -> bool:
    """The final is decided. A pending third-place match does not hold this back."""
    return bracket.champion is not None


def get_bracket_display(bracket: Bracket) -> Dict:
    """Get bracket data formatted for display."""
    return {
        'rounds': [
            {'name': get_round_name(len(r)), 'matches': [m.to_dict() for m in r]}
            for r in bracket.rounds
        ],
        'third_place': bracket.third_place.to_dict() if bracket.third_place else None,
        'champion': team_name(bracket.champion),
        'byes': sum(1 for m in bracket.rounds[0] if m.is_bye) if bracket.rounds else 0,
    }


def _get_match(bracket: Bracket, round_index: int, match_index: int) -> Match:
    if not 0 <= round_index < len(bracket.rounds):
        raise InvalidTransition(f'Round {round_index} does not exist')
    if not 0 <= match_index < len(bracket.rounds[round_index]):
        raise InvalidTransition(f'Round {round_index} has no match {match_index}')
    return bracket.rounds[round_index][match_index]


def _check_result_teams(label, p1, p2, result):
    if {result.winner, result.loser} != {team_name(p1), team_name(p2)}:
        raise InvalidTransition(f'Result {result.winner} vs {result.loser} does not belong to {label}')


def _route_to_third_place(bracket: Bracket, loser: Optional[Team]):
    if loser is None:
        return
    if bracket.third_place is None:
        bracket.third_place = ThirdPlaceMatch(p1=loser)
    else:
        bracket.third_place.p2 = loser
    logger.debug(f'{loser.name} drops to the third-place match')


def _propagate_winner(bracket: Bracket, round_index: int, match_index: int):
    """Write a decided match's winner into its slot in the next round."""
    winner = bracket.rounds[round_index][match_index].winner
    if round_index + 1 >= len(bracket.rounds):
        bracket.champion = winner
        logger.info(f'Champion: {winner.name}')
        return

    next_index = match_index // 2
    next_match = bracket.rounds[round_index + 1][next_index]
    if match_index % 2 == 0:
        next_match.p1 = winner
    else:
        next_match.p2 = winner

    # An odd round leaves the last match of the next round with a single feeder
    has_second_feeder = next_index * 2 + 1 < len(bracket.rounds[round_index])
    if not has_second_feeder and next_match.winner is None:
        next_match.winner = winner
        next_match.is_bye = True
        _propagate_winner(bracket, round_index + 1, next_index)
