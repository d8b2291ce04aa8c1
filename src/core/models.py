"""
Data models shared by the match, group, bracket and tournament engines.
"""
from typing import List, Dict, Optional, NamedTuple, Tuple


CUPS_PER_SIDE = 6
UNKNOWN_PLAYER = 'Unknown'
BYE_NAME = 'Bye'

WIN_REGULAR = 'regular'
WIN_OT = 'ot'
WIN_SHOOTER = 'shooter'
WIN_TYPES = (WIN_REGULAR, WIN_OT, WIN_SHOOTER)

# Formations offered to the rearranging side, keyed by the opponent's standing cups
FORMATIONS = {
    4: ('diamond',),
    3: ('pyramid_1_2', 'pyramid_2_1'),
    2: ('line_vert', 'line_horiz'),
}


class InvalidTransition(Exception):
    """An action was attempted in a state that does not allow it."""


class Team:
    def __init__(self, name, players=None):
        self.name = name
        self.players = list(players) if players else []

    def __eq__(self, other):
        if isinstance(other, Team):
            return self.name == other.name
        return NotImplemented

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return f"Team(name={self.name}, players={self.players})"

    @property
    def is_bye(self):
        return self.name == BYE_NAME

    def to_dict(self):
        return {'name': self.name, 'players': list(self.players)}

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        if isinstance(data, str):
            return cls(data)
        return cls(data['name'], data.get('players'))


def team_name(team: Optional[Team]) -> Optional[str]:
    return team.name if team is not None else None


class CupHit(NamedTuple):
    player: str
    team: str
    cup_index: int
    timestamp: float

    def to_dict(self):
        return {'player': self.player, 'team': self.team,
                'cupIndex': self.cup_index, 'timestamp': self.timestamp}

    @classmethod
    def from_dict(cls, data):
        return cls(data['player'], data['team'], data['cupIndex'], data.get('timestamp', 0))


class Result(NamedTuple):
    """Terminal output of a match. Winner and loser are team names."""
    winner: str
    loser: str
    win_type: str
    cups_remaining: Tuple[int, int]
    cup_hits: Tuple[CupHit, ...] = ()

    @property
    def winner_cups(self):
        return self.cups_remaining[0]

    @property
    def loser_cups(self):
        return self.cups_remaining[1]

    def to_dict(self):
        return {
            'winner': self.winner,
            'loser': self.loser,
            'winType': self.win_type,
            'cupsRemaining': {'winner': self.cups_remaining[0], 'loser': self.cups_remaining[1]},
            'cupHits': [hit.to_dict() for hit in self.cup_hits],
        }

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        cups = data['cupsRemaining']
        return cls(
            data['winner'],
            data['loser'],
            data['winType'],
            (cups['winner'], cups['loser']),
            tuple(CupHit.from_dict(h) for h in data.get('cupHits', [])),
        )


class Match:
    def __init__(self, id, p1=None, p2=None, winner=None, win_type=None,
                 cups_remaining=None, is_bye=False, cup_hits=None):
        self.id = id
        self.p1 = p1
        self.p2 = p2
        self.winner = winner
        self.win_type = win_type
        self.cups_remaining = cups_remaining  # {'winner': n, 'loser': n}
        self.is_bye = is_bye
        self.cup_hits = list(cup_hits) if cup_hits else []

    def __repr__(self):
        return (f"Match(id={self.id}, p1={team_name(self.p1)}, p2={team_name(self.p2)}, "
                f"winner={team_name(self.winner)})")

    @property
    def is_playable(self):
        return self.p1 is not None and self.p2 is not None and self.winner is None

    @property
    def loser(self):
        if self.winner is None or self.is_bye:
            return None
        return self.p2 if self.winner == self.p1 else self.p1

    def involves(self, name):
        return name in (team_name(self.p1), team_name(self.p2))

    def record(self, result: Result):
        """Store a result on this match. Assumes the caller validated the teams."""
        self.winner = self.p1 if team_name(self.p1) == result.winner else self.p2
        self.win_type = result.win_type
        self.cups_remaining = {'winner': result.winner_cups, 'loser': result.loser_cups}
        self.cup_hits = list(result.cup_hits)

    def to_dict(self):
        data = {
            'id': self.id,
            'p1': self.p1.to_dict() if self.p1 else None,
            'p2': self.p2.to_dict() if self.p2 else None,
            'winner': team_name(self.winner),
            'winType': self.win_type,
            'cupsRemaining': dict(self.cups_remaining) if self.cups_remaining else None,
        }
        if self.is_bye:
            data['isBye'] = True
        if self.cup_hits:
            data['cupHits'] = [hit.to_dict() for hit in self.cup_hits]
        return data

    @classmethod
    def from_dict(cls, data):
        p1 = Team.from_dict(data.get('p1'))
        p2 = Team.from_dict(data.get('p2'))
        winner = None
        if data.get('winner'):
            winner = p1 if p1 is not None and p1.name == data['winner'] else p2
        return cls(data['id'], p1, p2, winner, data.get('winType'),
                   data.get('cupsRemaining'), data.get('isBye', False),
                   [CupHit.from_dict(h) for h in data.get('cupHits', [])])


class Standing:
    def __init__(self, name, players=None):
        self.name = name
        self.players = list(players) if players else []
        self.points = 0
        self.wins = 0
        self.ot_wins = 0
        self.ot_losses = 0
        self.losses = 0
        self.shooter_wins = 0
        self.cup_diff = 0
        self.cups_hit = 0
        self.cups_lost = 0
        self.games_played = 0
        self.player_stats = {}  # player -> {'cupsHit': n, 'gamesPlayed': n}

    def __repr__(self):
        return (f"Standing(name={self.name}, points={self.points}, "
                f"shooter_wins={self.shooter_wins}, cup_diff={self.cup_diff})")

    _FIELDS = [
        ('points', 'points'), ('wins', 'wins'), ('ot_wins', 'otWins'),
        ('ot_losses', 'otLosses'), ('losses', 'losses'),
        ('shooter_wins', 'shooterWins'), ('cup_diff', 'cupDiff'),
        ('cups_hit', 'cupsHit'), ('cups_lost', 'cupsLost'),
        ('games_played', 'gamesPlayed'),
    ]

    def to_dict(self):
        data = {'name': self.name, 'players': list(self.players)}
        for attr, key in self._FIELDS:
            data[key] = getattr(self, attr)
        data['playerStats'] = {p: dict(s) for p, s in self.player_stats.items()}
        return data

    @classmethod
    def from_dict(cls, data):
        standing = cls(data['name'], data.get('players'))
        for attr, key in cls._FIELDS:
            setattr(standing, attr, data.get(key, 0))
        standing.player_stats = {p: dict(s) for p, s in data.get('playerStats', {}).items()}
        return standing


class Group:
    def __init__(self, name, teams=None, matches=None, standings=None, advancing_count=2):
        self.name = name
        self.teams = teams if teams is not None else []
        self.matches = matches if matches is not None else []
        self.standings = standings if standings is not None else []
        self.advancing_count = advancing_count

    def __repr__(self):
        return f"Group(name={self.name}, teams={[t.name for t in self.teams]})"

    def to_dict(self):
        return {
            'name': self.name,
            'teams': [t.to_dict() for t in self.teams],
            'matches': [m.to_dict() for m in self.matches],
            'standings': [s.to_dict() for s in self.standings],
            'advancingCount': self.advancing_count,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            data['name'],
            [Team.from_dict(t) for t in data.get('teams', [])],
            [Match.from_dict(m) for m in data.get('matches', [])],
            [Standing.from_dict(s) for s in data.get('standings', [])],
            data.get('advancingCount', 2),
        )


class ThirdPlaceMatch:
    def __init__(self, p1=None, p2=None, winner=None):
        self.p1 = p1
        self.p2 = p2
        self.winner = winner

    def __repr__(self):
        return (f"ThirdPlaceMatch(p1={team_name(self.p1)}, p2={team_name(self.p2)}, "
                f"winner={team_name(self.winner)})")

    @property
    def is_playable(self):
        return self.p1 is not None and self.p2 is not None and self.winner is None

    def to_dict(self):
        return {
            'p1': self.p1.to_dict() if self.p1 else None,
            'p2': self.p2.to_dict() if self.p2 else None,
            'winner': team_name(self.winner),
        }

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        p1 = Team.from_dict(data.get('p1'))
        p2 = Team.from_dict(data.get('p2'))
        winner = None
        if data.get('winner'):
            winner = p1 if p1 is not None and p1.name == data['winner'] else p2
        return cls(p1, p2, winner)


# Match references: which match the live game belongs to.

class GroupMatchRef(NamedTuple):
    group_index: int
    match_index: int

    def to_dict(self):
        return {'type': 'group', 'groupIndex': self.group_index, 'matchIndex': self.match_index}


class BracketMatchRef(NamedTuple):
    round_index: int
    match_index: int

    def to_dict(self):
        return {'type': 'bracket', 'roundIndex': self.round_index, 'matchIndex': self.match_index}


class ThirdPlaceRef(NamedTuple):
    def to_dict(self):
        return {'type': 'thirdPlace'}


def match_ref_from_dict(data: Optional[Dict]):
    """Parse a serialized match reference."""
    if data is None:
        return None
    ref_type = data.get('type')
    if ref_type == 'group':
        return GroupMatchRef(int(data['groupIndex']), int(data['matchIndex']))
    if ref_type == 'bracket':
        return BracketMatchRef(int(data['roundIndex']), int(data['matchIndex']))
    if ref_type == 'thirdPlace':
        return ThirdPlaceRef()
    raise InvalidTransition(f"Unknown match reference type: {ref_type!r}")


def teams_from_list(items: List) -> List[Team]:
    """Build Team objects from names, dicts or Teams, rejecting blanks and duplicates."""
    teams = []
    seen = set()
    for item in items:
        team = item if isinstance(item, Team) else Team.from_dict(item)
        name = (team.name or '').strip()
        if not name:
            raise InvalidTransition('Team names must not be empty')
        if name == BYE_NAME:
            raise InvalidTransition(f'"{BYE_NAME}" is reserved for bracket byes')
        if name in seen:
            raise InvalidTransition(f'Duplicate team name: {name}')
        seen.add(name)
        teams.append(Team(name, [p.strip() for p in team.players if p and p.strip()]))
    return teams
