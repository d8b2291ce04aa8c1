"""
Shared pytest fixtures for the beer pong tournament tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.models import Team
from core import tournament


@pytest.fixture
def red():
    return Team('Red', ['Ann', 'Bob'])


@pytest.fixture
def blue():
    return Team('Blue', ['Cat', 'Dan'])


@pytest.fixture
def four_teams():
    """Four teams with two-player rosters."""
    return [
        Team('Red', ['Ann', 'Bob']),
        Team('Blue', ['Cat', 'Dan']),
        Team('Green', ['Eve', 'Fay']),
        Team('Gold', ['Gus', 'Hal']),
    ]


@pytest.fixture
def six_names():
    return ['Aces', 'Bolts', 'Cobras', 'Dingos', 'Eagles', 'Foxes']


@pytest.fixture
def play_out():
    """Play the live match to a shooter win for ``winner_side`` and finish it.

    Every hit is left unattributed and credited to the unknown player when
    its timeout passes.
    """
    def _play_out(state, winner_side=1, player=None):
        loser_side = 2 if winner_side == 1 else 1
        for i in range(6):
            state = tournament.play(state, 'toggle_cup', side=loser_side, index=i, now=100.0 + i)
            if player:
                state = tournament.play(state, 'select_player', player=player, now=100.5 + i)
        if state.game_state.pending_attribution is not None:
            state = tournament.play(state, 'expire_attribution', now=1000.0)
        return tournament.finish_match(state)
    return _play_out


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point the web app at an empty temporary data directory."""
    import app as app_module
    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    return tmp_path


@pytest.fixture
def client(data_dir):
    """Flask test client writing into ``data_dir``."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
