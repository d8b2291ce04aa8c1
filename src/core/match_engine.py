"""
Live scoring of a single beer pong match.

Tracks both cup racks, the game clock, sudden death, hit streaks, the one-time
rearrange per side, the undo history and who hit each cup. Every public
function takes a MatchGameState and returns a new one; the state passed in is
never modified, so a caller can keep the previous value for replay.

Sides are numbered 1 and 2. ``cups1`` is side 1's own rack, so a hit on
``cups1`` is scored by side 2.
"""
import copy
import logging
import time
from typing import List, Optional, Tuple

from .models import (
    CUPS_PER_SIDE, UNKNOWN_PLAYER, FORMATIONS,
    WIN_REGULAR, WIN_OT, WIN_SHOOTER,
    CupHit, InvalidTransition, Result, Team,
)

logger = logging.getLogger(__name__)

ATTRIBUTION_TIMEOUT_SECONDS = 15
HISTORY_LIMIT = 200

# Fields captured by an undo snapshot
_SNAPSHOT_FIELDS = [
    ('cups1', 'cups1'), ('cups2', 'cups2'),
    ('streak1', 'streak1'), ('streak2', 'streak2'),
    ('sudden_death', 'suddenDeath'),
    ('rearrange_used1', 'rearrangeUsed1'), ('rearrange_used2', 'rearrangeUsed2'),
    ('formation1', 'formation1'), ('formation2', 'formation2'),
]


class MatchGameState:
    def __init__(self, team1: Team, team2: Team, initial_time: int,
                 attribution_timeout: int = ATTRIBUTION_TIMEOUT_SECONDS,
                 history_limit: int = HISTORY_LIMIT):
        self.team1 = team1
        self.team2 = team2
        self.initial_time = initial_time
        self.attribution_timeout = attribution_timeout
        self.history_limit = history_limit
        self.cups1 = [True] * CUPS_PER_SIDE
        self.cups2 = [True] * CUPS_PER_SIDE
        self.time_left = initial_time
        self.is_active = False
        self.sudden_death = False
        self.streak1 = 0
        self.streak2 = 0
        self.history = []
        self.rearrange_used1 = False
        self.rearrange_used2 = False
        self.formation1 = None  # {'type': ..., 'slots': [...]}
        self.formation2 = None
        self.cup_hits = []
        self.pending_attribution = None
        self.hit_count = 0
        self.result = None
        # Events emitted by the most recent transition only
        self.events = []

    def __repr__(self):
        r1, r2 = cups_remaining(self)
        return (f"MatchGameState({self.team1.name} {r1} - {r2} {self.team2.name}, "
                f"time_left={self.time_left}, sudden_death={self.sudden_death})")

    def to_dict(self):
        return {
            'team1': self.team1.to_dict(),
            'team2': self.team2.to_dict(),
            'initialTime': self.initial_time,
            'attributionTimeout': self.attribution_timeout,
            'historyLimit': self.history_limit,
            'cups1': list(self.cups1),
            'cups2': list(self.cups2),
            'timeLeft': self.time_left,
            'isActive': self.is_active,
            'suddenDeath': self.sudden_death,
            'streak1': self.streak1,
            'streak2': self.streak2,
            'history': copy.deepcopy(self.history),
            'rearrangeUsed1': self.rearrange_used1,
            'rearrangeUsed2': self.rearrange_used2,
            'formation1': copy.deepcopy(self.formation1),
            'formation2': copy.deepcopy(self.formation2),
            'cupHits': [hit.to_dict() for hit in self.cup_hits],
            'pendingAttribution': dict(self.pending_attribution) if self.pending_attribution else None,
            'hitCount': self.hit_count,
            'result': self.result.to_dict() if self.result else None,
        }

    @classmethod
    def from_dict(cls, data):
        state = cls(
            Team.from_dict(data['team1']),
            Team.from_dict(data['team2']),
            data.get('initialTime', data.get('timeLeft', 0)),
            data.get('attributionTimeout', ATTRIBUTION_TIMEOUT_SECONDS),
            data.get('historyLimit', HISTORY_LIMIT),
        )
        state.cups1 = list(data.get('cups1', state.cups1))
        state.cups2 = list(data.get('cups2', state.cups2))
        state.time_left = data.get('timeLeft', state.initial_time)
        state.is_active = data.get('isActive', False)
        state.sudden_death = data.get('suddenDeath', False)
        state.streak1 = data.get('streak1', 0)
        state.streak2 = data.get('streak2', 0)
        state.history = copy.deepcopy(data.get('history', []))
        state.rearrange_used1 = data.get('rearrangeUsed1', False)
        state.rearrange_used2 = data.get('rearrangeUsed2', False)
        state.formation1 = copy.deepcopy(data.get('formation1'))
        state.formation2 = copy.deepcopy(data.get('formation2'))
        state.cup_hits = [CupHit.from_dict(h) for h in data.get('cupHits', [])]
        pending = data.get('pendingAttribution')
        state.pending_attribution = dict(pending) if pending else None
        state.hit_count = data.get('hitCount', len(state.cup_hits))
        state.result = Result.from_dict(data.get('result'))
        return state


# ---------------------------------------------------------------------------
# Read-only helpers
# ---------------------------------------------------------------------------

def cups_remaining(state: MatchGameState) -> Tuple[int, int]:
    """Standing cups for (side 1, side 2)."""
    return sum(1 for c in state.cups1 if c), sum(1 for c in state.cups2 if c)


def elapsed_seconds(state: MatchGameState) -> int:
    return state.initial_time - state.time_left


def format_clock(seconds: int) -> str:
    mins, secs = divmod(max(seconds, 0), 60)
    return f"{mins:02d}:{secs:02d}"


def rearrange_options(state: MatchGameState, side: int) -> List[str]:
    """Formations ``side`` may currently impose on the opponent's rack."""
    _check_side(side)
    if state.result is not None or _rearrange_used(state, side):
        return []
    opponent_cups = _cups(state, _other(side))
    return list(FORMATIONS.get(sum(1 for c in opponent_cups if c), ()))


def team_for_side(state: MatchGameState, side: int) -> Team:
    _check_side(side)
    return state.team1 if side == 1 else state.team2


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def start_or_resume(team1: Team, team2: Team, time_limit: int, initial_state=None,
                    attribution_timeout: int = ATTRIBUTION_TIMEOUT_SECONDS,
                    history_limit: int = HISTORY_LIMIT) -> MatchGameState:
    """Create a fresh match state, or restore one from a saved snapshot."""
    if initial_state is not None:
        if isinstance(initial_state, MatchGameState):
            return _copy(initial_state)
        return MatchGameState.from_dict(initial_state)
    if time_limit is None or time_limit < 0:
        raise InvalidTransition('Game time must be a non-negative number of seconds')
    return MatchGameState(team1, team2, int(time_limit), attribution_timeout, history_limit)


def set_active(state: MatchGameState, active: bool) -> MatchGameState:
    """Start or pause the clock."""
    _check_undecided(state)
    new = _copy(state)
    new.is_active = bool(active)
    return new


def toggle_cup(state: MatchGameState, side: int, index: int, now: Optional[float] = None) -> MatchGameState:
    """Flip one cup in ``side``'s rack between standing and removed."""
    _check_side(side)
    if not 0 <= index < CUPS_PER_SIDE:
        raise InvalidTransition(f'Cup index {index} is out of range')
    _check_undecided(state)
    now = time.time() if now is None else now

    new = _copy(state)
    _push_history(new)
    if not new.is_active and not new.sudden_death:
        new.is_active = True

    cups = _cups(new, side)
    was_standing = cups[index]
    cups[index] = not was_standing
    hitter = _other(side)
    change = 'removed' if was_standing else 'restored'
    logger.debug(f'Cup {index} of {team_for_side(new, side).name} {change}')

    if was_standing:
        _set_streak(new, hitter, _streak(new, hitter) + 1)
        _set_streak(new, side, 0)
        _open_attribution(new, hitter, index, now)
        if new.sudden_death:
            _decide(new, hitter, WIN_OT)
            return new

    if not any(cups):
        _decide(new, hitter, WIN_SHOOTER)
    return new


def tick(state: MatchGameState, now: Optional[float] = None) -> MatchGameState:
    """Advance the clock by one second and expire an overdue attribution."""
    new = _copy(state)
    pending = new.pending_attribution
    if pending is not None and now is not None and now >= pending['deadline']:
        _resolve_attribution(new, UNKNOWN_PLAYER, now)

    if not new.is_active or new.sudden_death or new.result is not None:
        return new
    if new.time_left > 0:
        new.time_left -= 1
    if new.time_left == 0:
        _time_expired(new)
    return new


def undo(state: MatchGameState) -> MatchGameState:
    """Restore the rack to how it was before the last cup toggle or rearrange."""
    if state.result is not None:
        raise InvalidTransition('The match is already decided')
    if not state.history:
        return state
    new = _copy(state)
    snapshot = new.history.pop()
    for attr, key in _SNAPSHOT_FIELDS:
        setattr(new, attr, copy.deepcopy(snapshot[key]))
    return new


def rearrange(state: MatchGameState, side: int, formation: str) -> MatchGameState:
    """Use ``side``'s one rearrange to put the opponent's cups into ``formation``."""
    _check_side(side)
    _check_undecided(state)
    if _rearrange_used(state, side):
        raise InvalidTransition(f'{team_for_side(state, side).name} already used their rearrange')
    options = rearrange_options(state, side)
    if formation not in options:
        raise InvalidTransition(f'Formation {formation!r} is not available (options: {options})')

    new = _copy(state)
    _push_history(new)
    opponent = _other(side)
    slots = [i for i, c in enumerate(_cups(new, opponent)) if c]
    setattr(new, f'rearrange_used{side}', True)
    setattr(new, f'formation{opponent}', {'type': formation, 'slots': slots})

    name = team_for_side(new, side).name
    new.events.append(_event(new, 'Formation Change', team_name=name,
                             notes=f'{name} chose {formation}'))
    return new


def select_player(state: MatchGameState, player: str, now: Optional[float] = None) -> MatchGameState:
    """Credit the pending hit to ``player``."""
    pending = state.pending_attribution
    if pending is None:
        raise InvalidTransition('No hit is waiting for a player')
    player = (player or '').strip() or UNKNOWN_PLAYER
    roster = team_for_side(state, pending['side']).players
    if player != UNKNOWN_PLAYER and roster and player not in roster:
        raise InvalidTransition(f'{player} does not play for {team_for_side(state, pending["side"]).name}')
    new = _copy(state)
    _resolve_attribution(new, player, time.time() if now is None else now)
    return new


def expire_attribution(state: MatchGameState, now: Optional[float] = None,
                       attribution_id: Optional[int] = None) -> MatchGameState:
    """Credit the pending hit to the unknown player once its timeout has run out.

    With ``attribution_id`` this acts as the timer callback for that hit and
    does nothing if the hit was already credited or replaced.
    """
    now = time.time() if now is None else now
    pending = state.pending_attribution
    if pending is None:
        return state
    if attribution_id is not None:
        if pending['id'] != attribution_id:
            return state
    elif now < pending['deadline']:
        return state
    new = _copy(state)
    _resolve_attribution(new, UNKNOWN_PLAYER, now)
    logger.info(f"Hit #{pending['id']} timed out waiting for a player")
    return new


def end_game(state: MatchGameState) -> MatchGameState:
    """Manual end: the side with more cups standing wins.

    A level rack outside sudden death goes to sudden death instead of a winner
    being picked.
    """
    _check_undecided(state)
    r1, r2 = cups_remaining(state)
    new = _copy(state)
    if r1 == r2:
        if state.sudden_death:
            raise InvalidTransition('Cups are level in sudden death; the next hit decides the match')
        new.sudden_death = True
        new.is_active = False
        logger.info(f'{new.team1.name} vs {new.team2.name} level at {r1} cups, going to sudden death')
        return new
    _decide(new, 1 if r1 > r2 else 2, WIN_REGULAR)
    return new


def finalize(state: MatchGameState) -> Result:
    """Produce the match Result once a winner is known and every hit is credited."""
    if state.result is None:
        raise InvalidTransition('The match has no winner yet')
    if state.pending_attribution is not None:
        raise InvalidTransition('Select who scored the last cup before finishing the match')
    return state.result._replace(cup_hits=tuple(state.cup_hits))


# ---------------------------------------------------------------------------
# Internals (operate on a private copy)
# ---------------------------------------------------------------------------

def _copy(state: MatchGameState) -> MatchGameState:
    new = copy.deepcopy(state)
    new.events = []
    return new


def _check_side(side):
    if side not in (1, 2):
        raise InvalidTransition(f'Side must be 1 or 2, got {side!r}')


def _check_undecided(state):
    if state.result is not None:
        raise InvalidTransition('The match is already decided')


def _other(side):
    return 2 if side == 1 else 1


def _cups(state, side):
    return state.cups1 if side == 1 else state.cups2


def _streak(state, side):
    return state.streak1 if side == 1 else state.streak2


def _set_streak(state, side, value):
    setattr(state, f'streak{side}', value)


def _rearrange_used(state, side):
    return state.rearrange_used1 if side == 1 else state.rearrange_used2


def _push_history(state):
    state.history.append({key: copy.deepcopy(getattr(state, attr)) for attr, key in _SNAPSHOT_FIELDS})
    if len(state.history) > state.history_limit:
        del state.history[0]


def _open_attribution(state, hitter, cup_index, now):
    if state.pending_attribution is not None:
        _resolve_attribution(state, UNKNOWN_PLAYER, now)
    state.hit_count += 1
    state.pending_attribution = {
        'id': state.hit_count,
        'side': hitter,
        'cupIndex': cup_index,
        'openedAt': now,
        'deadline': now + state.attribution_timeout,
    }


def _resolve_attribution(state, player, now):
    pending = state.pending_attribution
    hitting_team = team_for_side(state, pending['side'])
    cup_label = f"Cup {pending['cupIndex'] + 1}"
    state.cup_hits.append(CupHit(player, hitting_team.name, pending['cupIndex'], now))
    state.pending_attribution = None
    state.events.append(_event(state, 'Hit', team_name=hitting_team.name, player_name=player,
                               cup_hit=cup_label, hit_number=pending['id'],
                               notes=f'{player} hit {cup_label}'))


def _event(state, event_type, team_name, notes, player_name=None, cup_hit='', hit_number=None):
    r1, r2 = cups_remaining(state)
    elapsed = elapsed_seconds(state)
    return {
        'hit_number': hit_number if hit_number is not None else state.hit_count,
        'game_time_str': format_clock(elapsed),
        'game_time_sec': elapsed,
        'phase': 'Overtime' if state.sudden_death else 'Regulation',
        'event_type': event_type,
        'team_name': team_name,
        'player_name': player_name,
        'cup_hit': cup_hit,
        'cups_left': f'{r1}-{r2}',
        'notes': notes,
    }


def _time_expired(state):
    r1, r2 = cups_remaining(state)
    if r1 == r2:
        state.sudden_death = True
        state.is_active = False
        logger.info(f'Time up with {r1} cups each: sudden death')
        return
    _decide(state, 1 if r1 > r2 else 2, WIN_REGULAR)


def _decide(state, winner_side, win_type):
    remaining = cups_remaining(state)
    winner_cups = remaining[winner_side - 1]
    loser_cups = remaining[_other(winner_side) - 1]
    if state.sudden_death:
        win_type = WIN_OT
    elif win_type == WIN_REGULAR and loser_cups == 0:
        win_type = WIN_SHOOTER
    winner = team_for_side(state, winner_side)
    loser = team_for_side(state, _other(winner_side))
    state.result = Result(winner.name, loser.name, win_type, (winner_cups, loser_cups))
    state.is_active = False
    logger.info(f'{winner.name} beat {loser.name} ({win_type}, {winner_cups}-{loser_cups})')
