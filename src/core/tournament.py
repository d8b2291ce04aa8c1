"""
Tournament flow from team entry to champion.

Views: input -> setup -> groups -> playoffSetup -> bracket -> complete, with
``game`` entered from ``groups`` or ``bracket`` while a match is live.

Each transition is a pure function ``(state, ...) -> state`` that raises
InvalidTransition without touching the state when the action is not allowed.
TournamentOrchestrator holds the current state, applies actions by name and
hands snapshots and match events to the persistence collaborator.
"""
import copy
import logging
import random
from typing import Callable, Dict, List, Optional

from . import match_engine
from .elimination import (
    Bracket, advance, generate_bracket, is_bracket_complete,
    record_third_place, seed_from_groups,
)
from .groups import all_groups_complete, apply_result, generate_groups
from .models import (
    UNKNOWN_PLAYER, BracketMatchRef, Group, GroupMatchRef, InvalidTransition,
    Result, Team, ThirdPlaceRef, match_ref_from_dict, teams_from_list,
)
from .settings import get_default_settings

logger = logging.getLogger(__name__)

VIEWS = ('input', 'setup', 'groups', 'playoffSetup', 'bracket', 'game', 'complete')
MODES = ('playoffs', 'groups', 'groups_only')


class TournamentState:
    def __init__(self, settings=None):
        self.settings = settings or get_default_settings()
        self.view = 'input'
        self.teams = []
        self.groups = []
        self.bracket = None
        self.config = None  # {'mode', 'numGroups', 'advancingPerGroup', 'gameTime'}
        self.playoff_game_time = self.settings['playoff_game_time_seconds']
        self.winner = None
        self.current_match = None
        self.game_state = None
        self.playoff_player_stats = {}  # team -> player -> {'cupsHit', 'gamesPlayed'}
        # Match events produced by the most recent transition
        self.events = []

    def __repr__(self):
        return f"TournamentState(view={self.view}, teams={len(self.teams)}, winner={self.winner})"

    @property
    def mode(self):
        return self.config['mode'] if self.config else None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

def to_snapshot(state: TournamentState) -> Dict:
    """Serializable snapshot of the whole tournament."""
    bracket = state.bracket
    return {
        'view': state.view,
        'teams': [t.to_dict() for t in state.teams],
        'matches': [[m.to_dict() for m in r] for r in bracket.rounds] if bracket else [],
        'groups': [g.to_dict() for g in state.groups],
        'tournamentConfig': dict(state.config) if state.config else None,
        'winner': state.winner,
        'thirdPlaceMatch': bracket.third_place.to_dict() if bracket and bracket.third_place else None,
        'playoffGameTime': state.playoff_game_time,
        'currentMatchIndex': state.current_match.to_dict() if state.current_match is not None else None,
        'gameState': state.game_state.to_dict() if state.game_state else None,
        'playoffPlayerStats': copy.deepcopy(state.playoff_player_stats),
    }


def from_snapshot(data: Dict, settings=None) -> TournamentState:
    """Rebuild a TournamentState from to_snapshot() output."""
    state = TournamentState(settings)
    view = data.get('view', 'input')
    if view not in VIEWS:
        raise InvalidTransition(f'Unknown view in snapshot: {view!r}')
    state.view = view
    state.teams = [Team.from_dict(t) for t in data.get('teams', [])]
    state.groups = [Group.from_dict(g) for g in data.get('groups', [])]
    if data.get('matches'):
        state.bracket = Bracket.from_dict({
            'rounds': data['matches'],
            'thirdPlaceMatch': data.get('thirdPlaceMatch'),
            'champion': True,
        })
    state.config = data.get('tournamentConfig')
    state.winner = data.get('winner')
    state.playoff_game_time = data.get('playoffGameTime', state.playoff_game_time)
    state.current_match = match_ref_from_dict(data.get('currentMatchIndex'))
    if data.get('gameState'):
        state.game_state = match_engine.MatchGameState.from_dict(data['gameState'])
    state.playoff_player_stats = copy.deepcopy(data.get('playoffPlayerStats') or {})
    return state


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def new_tournament(settings=None) -> TournamentState:
    return TournamentState(settings)


def submit_teams(state: TournamentState, teams: List) -> TournamentState:
    """Finalize the team list (names or {'name', 'players'} dicts)."""
    _require_view(state, 'input')
    team_list = teams_from_list(teams)
    if len(team_list) < 2:
        raise InvalidTransition('At least 2 teams are required')
    new = _copy(state)
    new.teams = team_list
    new.view = 'setup'
    logger.info(f'{len(team_list)} teams entered')
    return new


def start_tournament(state: TournamentState, mode: str, num_groups: Optional[int] = None,
                     advancing_per_group: Optional[int] = None, game_time: Optional[int] = None,
                     seed: Optional[int] = None) -> TournamentState:
    """Start the group stage, or go straight to the bracket in playoffs mode."""
    _require_view(state, 'setup')
    if mode not in MODES:
        raise InvalidTransition(f'Unknown tournament mode: {mode!r}')
    settings = state.settings
    game_time = _game_time(game_time, settings['game_time_seconds'])

    new = _copy(state)
    if mode == 'playoffs':
        new.config = {'mode': mode, 'numGroups': None, 'advancingPerGroup': None, 'gameTime': game_time}
        new.playoff_game_time = game_time
        new.bracket = generate_bracket(new.teams)
        new.view = 'bracket'
        logger.info(f'Playoffs started with {len(new.teams)} teams')
        return new

    num_teams = len(state.teams)
    if num_teams < settings['min_teams_for_groups']:
        raise InvalidTransition(
            f"Group mode needs at least {settings['min_teams_for_groups']} teams, got {num_teams}")
    num_groups = int(num_groups or 2)
    if num_groups < 1 or num_teams // num_groups < settings['min_teams_per_group']:
        raise InvalidTransition(
            f"{num_teams} teams cannot form {num_groups} groups of at least "
            f"{settings['min_teams_per_group']}")
    smallest_group = num_teams // num_groups
    if mode == 'groups':
        advancing_per_group = int(advancing_per_group or 2)
        if not 1 <= advancing_per_group <= smallest_group:
            raise InvalidTransition(f'Cannot advance {advancing_per_group} teams from groups of {smallest_group}')
        if num_groups * advancing_per_group < 2:
            raise InvalidTransition('At least 2 teams must advance to the playoffs')
    else:
        advancing_per_group = 0

    rng = random.Random(seed) if seed is not None else None
    new.config = {'mode': mode, 'numGroups': num_groups,
                  'advancingPerGroup': advancing_per_group, 'gameTime': game_time}
    new.groups = generate_groups(new.teams, num_groups, advancing_per_group, rng)
    new.view = 'groups'
    logger.info(f'Group stage started: {num_groups} groups')
    return new


def select_match(state: TournamentState, ref, now: Optional[float] = None) -> TournamentState:
    """Open the live game for a group, bracket or third-place match."""
    if isinstance(ref, dict):
        ref = match_ref_from_dict(ref)
    if isinstance(ref, GroupMatchRef):
        _require_view(state, 'groups')
        match = _group_match(state, ref)
        time_limit = state.config['gameTime']
    elif isinstance(ref, BracketMatchRef):
        _require_view(state, 'bracket')
        match = _bracket_match(state, ref)
        time_limit = state.playoff_game_time
    elif isinstance(ref, ThirdPlaceRef):
        _require_view(state, 'bracket', 'complete')
        match = state.bracket.third_place if state.bracket else None
        if match is None:
            raise InvalidTransition('There is no third-place match yet')
        time_limit = state.playoff_game_time
    else:
        raise InvalidTransition(f'Unknown match reference: {ref!r}')

    if match.winner is not None:
        raise InvalidTransition('That match has already been played')
    if match.p1 is None or match.p2 is None:
        raise InvalidTransition('That match is still waiting for its teams')

    new = _copy(state)
    settings = state.settings
    new.game_state = match_engine.start_or_resume(
        match.p1, match.p2, time_limit,
        attribution_timeout=settings['attribution_timeout_seconds'],
        history_limit=settings['history_limit'])
    new.current_match = ref
    new.view = 'game'
    logger.info(f'Match started: {match.p1.name} vs {match.p2.name}')
    return new


def play(state: TournamentState, action: str, **params) -> TournamentState:
    """Apply a live-game action (toggle_cup, undo, tick, ...) to the current match."""
    _require_view(state, 'game')
    handler = GAME_ACTIONS.get(action)
    if handler is None:
        raise InvalidTransition(f'Unknown game action: {action!r}')
    game_state = handler(state.game_state, **params)
    new = _copy(state)
    new.game_state = game_state
    match_id = _current_match_id(state)
    new.events = [dict(event, match_id=match_id) for event in game_state.events]
    return new


def tick(state: TournamentState, now: Optional[float] = None) -> TournamentState:
    """One clock second. Only a live game reacts to it."""
    if state.view != 'game':
        return state
    return play(state, 'tick', now=now)


def finish_match(state: TournamentState) -> TournamentState:
    """Finalize the live game and feed its Result to the group or bracket."""
    _require_view(state, 'game')
    result = match_engine.finalize(state.game_state)
    ref = state.current_match

    new = _copy(state)
    if isinstance(ref, GroupMatchRef):
        new.groups[ref.group_index] = apply_result(new.groups[ref.group_index], ref.match_index, result)
        new.view = 'groups'
        if new.mode == 'groups_only' and all_groups_complete(new.groups):
            _complete_group_stage(new)
    else:
        if isinstance(ref, BracketMatchRef):
            match = _bracket_match(state, ref)
            new.bracket = advance(new.bracket, ref.round_index, ref.match_index, result)
        else:
            match = state.bracket.third_place
            new.bracket = record_third_place(new.bracket, result)
        _add_playoff_stats(new.playoff_player_stats, [match.p1, match.p2], result)
        new.view = 'bracket'
        if is_bracket_complete(new.bracket):
            new.view = 'complete'
            if new.winner is None:
                new.winner = new.bracket.champion.name
                logger.info(f'Tournament complete, champion: {new.winner}')

    new.current_match = None
    new.game_state = None
    return new


def leave_match(state: TournamentState) -> TournamentState:
    """Abandon the live game without recording anything."""
    _require_view(state, 'game')
    new = _copy(state)
    if isinstance(state.current_match, GroupMatchRef):
        new.view = 'groups'
    else:
        new.view = 'complete' if state.winner is not None else 'bracket'
    new.current_match = None
    new.game_state = None
    logger.info('Live game abandoned')
    return new


def go_to_playoff_setup(state: TournamentState) -> TournamentState:
    _require_view(state, 'groups')
    if state.mode != 'groups':
        raise InvalidTransition('This tournament has no playoffs')
    if not all_groups_complete(state.groups):
        raise InvalidTransition('Every group match must be played first')
    new = _copy(state)
    new.view = 'playoffSetup'
    return new


def start_playoffs(state: TournamentState, playoff_game_time: Optional[int] = None) -> TournamentState:
    """Seed the bracket from the final group standings."""
    _require_view(state, 'playoffSetup')
    new = _copy(state)
    new.playoff_game_time = _game_time(playoff_game_time, state.settings['playoff_game_time_seconds'])
    new.bracket = generate_bracket(seed_from_groups(new.groups))
    new.view = 'bracket'
    logger.info('Playoffs started')
    return new


def reset(state: TournamentState) -> TournamentState:
    """Throw the tournament away and start over."""
    return new_tournament(state.settings)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def top_shooters(state: TournamentState, phase: str = 'all', hide_unknown: bool = True,
                 limit: Optional[int] = 10) -> List[Dict]:
    """Players ranked by cups hit, from the group stage, the playoffs or both."""
    if phase not in ('all', 'groups', 'playoffs'):
        raise InvalidTransition(f'Unknown phase filter: {phase!r}')

    rows = []
    if phase in ('all', 'groups'):
        for group in state.groups:
            for standing in group.standings:
                for player, stats in standing.player_stats.items():
                    rows.append((standing.name, player, stats))
    if phase in ('all', 'playoffs'):
        for team, players in state.playoff_player_stats.items():
            for player, stats in players.items():
                rows.append((team, player, stats))

    combined = {}
    for team, player, stats in rows:
        if hide_unknown and player == UNKNOWN_PLAYER:
            continue
        entry = combined.setdefault((team, player), {'name': player, 'team': team, 'cupsHit': 0, 'gamesPlayed': 0})
        entry['cupsHit'] += stats.get('cupsHit', 0)
        entry['gamesPlayed'] += stats.get('gamesPlayed', 0)

    ranked = sorted(combined.values(), key=lambda p: -p['cupsHit'])
    for entry in ranked:
        games = entry['gamesPlayed']
        entry['cupsPerGame'] = round(entry['cupsHit'] / games, 1) if games else None
    return ranked[:limit] if limit is not None else ranked


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

GAME_ACTIONS = {
    'toggle_cup': match_engine.toggle_cup,
    'set_active': match_engine.set_active,
    'undo': match_engine.undo,
    'rearrange': match_engine.rearrange,
    'select_player': match_engine.select_player,
    'expire_attribution': match_engine.expire_attribution,
    'end_game': match_engine.end_game,
    'tick': match_engine.tick,
}

ACTIONS = {
    'submit_teams': submit_teams,
    'start_tournament': start_tournament,
    'select_match': select_match,
    'finish_match': finish_match,
    'leave_match': leave_match,
    'go_to_playoff_setup': go_to_playoff_setup,
    'start_playoffs': start_playoffs,
    'tick': tick,
    'reset': reset,
}


class TournamentOrchestrator:
    """Owns the current TournamentState and applies actions to it by name.

    ``on_snapshot`` receives the snapshot after every transition and
    ``on_event`` each match event. Both are best effort: a failing listener
    is logged and never rolls the state back.
    """

    def __init__(self, state: Optional[TournamentState] = None, settings=None,
                 on_snapshot: Optional[Callable[[Dict], None]] = None,
                 on_event: Optional[Callable[[Dict], None]] = None):
        self.state = state or new_tournament(settings)
        self.on_snapshot = on_snapshot
        self.on_event = on_event

    @classmethod
    def restore(cls, snapshot: Dict, settings=None, **listeners):
        return cls(from_snapshot(snapshot, settings), **listeners)

    def dispatch(self, action: str, **params) -> TournamentState:
        if action in GAME_ACTIONS and action != 'tick':
            new_state = play(self.state, action, **params)
        elif action in ACTIONS:
            new_state = ACTIONS[action](self.state, **params)
        else:
            raise InvalidTransition(f'Unknown action: {action!r}')

        if new_state is self.state:
            return new_state
        self.state = new_state
        self._publish()
        return new_state

    def snapshot(self) -> Dict:
        return to_snapshot(self.state)

    def _publish(self):
        for event in self.state.events:
            self._notify(self.on_event, event)
        self._notify(self.on_snapshot, self.snapshot())

    def _notify(self, listener, payload):
        if listener is None:
            return
        try:
            listener(payload)
        except Exception as e:
            logger.warning(f'Tournament listener failed: {e}')


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

def _copy(state: TournamentState) -> TournamentState:
    new = copy.deepcopy(state)
    new.events = []
    return new


def _require_view(state: TournamentState, *views: str):
    if state.view not in views:
        needed = ' or '.join(repr(v) for v in views)
        raise InvalidTransition(f'Not allowed in the {state.view!r} view (needs {needed})')


def _game_time(value, default):
    if value is None:
        return default
    value = int(value)
    if value <= 0:
        raise InvalidTransition('Game time must be a positive number of seconds')
    return value


def _group_match(state: TournamentState, ref: GroupMatchRef):
    if not 0 <= ref.group_index < len(state.groups):
        raise InvalidTransition(f'Group {ref.group_index} does not exist')
    group = state.groups[ref.group_index]
    if not 0 <= ref.match_index < len(group.matches):
        raise InvalidTransition(f'Group {group.name} has no match {ref.match_index}')
    return group.matches[ref.match_index]


def _bracket_match(state: TournamentState, ref: BracketMatchRef):
    rounds = state.bracket.rounds if state.bracket else []
    if not 0 <= ref.round_index < len(rounds) or not 0 <= ref.match_index < len(rounds[ref.round_index]):
        raise InvalidTransition(f'Bracket match {ref.round_index}/{ref.match_index} does not exist')
    return rounds[ref.round_index][ref.match_index]


def _current_match_id(state: TournamentState) -> Optional[str]:
    ref = state.current_match
    if isinstance(ref, GroupMatchRef):
        return _group_match(state, ref).id
    if isinstance(ref, BracketMatchRef):
        return _bracket_match(state, ref).id
    if isinstance(ref, ThirdPlaceRef):
        return 'third-place'
    return None


def _complete_group_stage(state: TournamentState):
    state.view = 'complete'
    if len(state.groups) == 1 and state.groups[0].standings:
        state.winner = state.groups[0].standings[0].name
    logger.info(f'Group stage complete, winner: {state.winner}')


def _add_playoff_stats(stats: Dict, teams: List[Team], result: Result):
    for team in teams:
        team_stats = stats.setdefault(team.name, {})
        for player in team.players:
            team_stats.setdefault(player, {'cupsHit': 0, 'gamesPlayed': 0})['gamesPlayed'] += 1
    for hit in result.cup_hits:
        team_stats = stats.setdefault(hit.team, {})
        team_stats.setdefault(hit.player, {'cupsHit': 0, 'gamesPlayed': 0})['cupsHit'] += 1
