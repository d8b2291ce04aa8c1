"""
Flask web application for the Beer Pong Tournament engine.

Stores each tournament snapshot and its logged records as YAML files under
DATA_DIR and exposes the tournament actions over a small JSON API.
"""
import os
from datetime import datetime

import yaml
from filelock import FileLock
from flask import Flask, request, jsonify

from core.models import InvalidTransition
from core.settings import load_settings
from core.tournament import TournamentOrchestrator, new_tournament, to_snapshot, top_shooters, from_snapshot

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(BASE_DIR, 'data'))

TOURNAMENTS_FILE_NAME = 'tournaments.yaml'
STATE_FILE_NAME = 'state.yaml'
EVENTS_FILE_NAME = 'events.yaml'
TEAMS_FILE_NAME = 'teams.yaml'
MATCHES_FILE_NAME = 'matches.yaml'
SETTINGS_FILE_NAME = 'settings.yaml'

# Columns kept for each logged match event
EVENT_FIELDS = (
    'match_id', 'hit_number', 'game_time_str', 'game_time_sec', 'team_name',
    'player_name', 'cup_hit', 'score_after', 'cups_left', 'phase', 'event_type', 'notes',
)
TEAM_FIELDS = ('name', 'group_name')
MATCH_FIELDS = ('p1', 'p2', 'round_index', 'group_id')


def _data_lock() -> FileLock:
    """Lock serializing every write under DATA_DIR."""
    os.makedirs(DATA_DIR, exist_ok=True)
    return FileLock(os.path.join(DATA_DIR, '.lock'), timeout=10)


def _tournament_dir(tournament_id: int) -> str:
    return os.path.join(DATA_DIR, 'tournaments', str(tournament_id))


def _load_yaml(file_path: str, default):
    if not os.path.exists(file_path):
        return default
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data if data else default
    except Exception as e:
        app.logger.warning(f'Failed to parse {file_path}: {e}')
        return default


def _save_yaml(file_path: str, data):
    os.makedirs(os.path.dirname(file_path), exist_ok=True)
    with open(file_path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False)


def get_settings() -> dict:
    """Engine settings, with overrides from DATA_DIR/settings.yaml."""
    return load_settings(os.path.join(DATA_DIR, SETTINGS_FILE_NAME))


def load_tournaments() -> list:
    """Load the tournament registry, oldest first."""
    data = _load_yaml(os.path.join(DATA_DIR, TOURNAMENTS_FILE_NAME), {})
    return data.get('tournaments', [])


def save_tournaments(tournaments: list):
    _save_yaml(os.path.join(DATA_DIR, TOURNAMENTS_FILE_NAME), {'tournaments': tournaments})


def find_tournament(tournament_id: int):
    return next((t for t in load_tournaments() if t['id'] == tournament_id), None)


def load_state(tournament_id: int):
    return _load_yaml(os.path.join(_tournament_dir(tournament_id), STATE_FILE_NAME), None)


def save_state(tournament_id: int, app_state: dict):
    _save_yaml(os.path.join(_tournament_dir(tournament_id), STATE_FILE_NAME), app_state)


def _load_records(tournament_id: int, file_name: str) -> list:
    data = _load_yaml(os.path.join(_tournament_dir(tournament_id), file_name), {})
    return data.get('records', [])


def _append_records(tournament_id: int, file_name: str, fields: tuple, items: list) -> list:
    """Append rows to one of the tournament's record files and return their new ids."""
    existing = _load_records(tournament_id, file_name)
    next_id = existing[-1]['id'] + 1 if existing else 1
    ids = []
    for item in items:
        record = {field: item.get(field) for field in fields}
        record['id'] = next_id
        record['created_at'] = datetime.now().isoformat(timespec='seconds')
        existing.append(record)
        ids.append(next_id)
        next_id += 1
    _save_yaml(os.path.join(_tournament_dir(tournament_id), file_name), {'records': existing})
    return ids


def load_events(tournament_id: int) -> list:
    return _load_records(tournament_id, EVENTS_FILE_NAME)


def append_events(tournament_id: int, events: list) -> list:
    """Append events to the tournament's log and return the ids they were given."""
    return _append_records(tournament_id, EVENTS_FILE_NAME, EVENT_FIELDS, events)


def load_teams(tournament_id: int) -> list:
    return _load_records(tournament_id, TEAMS_FILE_NAME)


def load_matches(tournament_id: int) -> list:
    return _load_records(tournament_id, MATCHES_FILE_NAME)


def _posted_tournament_id(data: dict):
    """The tournament_id of a POST body, or an error response."""
    tournament_id = data.get('tournament_id')
    if tournament_id is None:
        return None, (jsonify({'error': 'Missing tournament_id'}), 400)
    try:
        tournament_id = int(tournament_id)
    except (TypeError, ValueError):
        return None, (jsonify({'error': 'tournament_id must be a number'}), 400)
    if find_tournament(tournament_id) is None:
        return None, (jsonify({'error': 'Tournament not found'}), 404)
    return tournament_id, None


def _tournament_payload(entry: dict, with_state: bool = False) -> dict:
    payload = dict(entry)
    if with_state:
        payload['app_state'] = load_state(entry['id'])
    return payload


@app.route('/api/tournaments', methods=['POST'])
def create_tournament():
    """Register a new tournament and store its empty starting snapshot."""
    data = request.get_json(silent=True) or {}
    config = data.get('config') or {}
    if not isinstance(config, dict):
        return jsonify({'error': 'config must be an object'}), 400

    with _data_lock():
        tournaments = load_tournaments()
        tournament_id = max((t['id'] for t in tournaments), default=0) + 1
        tournaments.append({
            'id': tournament_id,
            'name': data.get('name'),
            'config': config,
            'created_at': datetime.now().isoformat(timespec='seconds'),
        })
        save_tournaments(tournaments)
        save_state(tournament_id, to_snapshot(new_tournament(get_settings())))

    app.logger.info(f'Tournament {tournament_id} created')
    return jsonify({'id': tournament_id})


@app.route('/api/tournaments', methods=['GET'])
def list_tournaments():
    tournaments = sorted(load_tournaments(), key=lambda t: t['id'], reverse=True)
    return jsonify({'tournaments': tournaments})


@app.route('/api/tournaments/latest', methods=['GET'])
def latest_tournament():
    """Most recently created tournament with its saved snapshot."""
    tournaments = load_tournaments()
    if not tournaments:
        return jsonify({'tournament': None})
    latest = max(tournaments, key=lambda t: t['id'])
    return jsonify({'tournament': _tournament_payload(latest, with_state=True)})


@app.route('/api/tournaments/<int:tournament_id>/state', methods=['PUT'])
def save_tournament_state(tournament_id):
    """Overwrite the stored snapshot with one sent by the client."""
    data = request.get_json(silent=True) or {}
    app_state = data.get('appState')
    if not isinstance(app_state, dict):
        return jsonify({'error': 'appState must be an object'}), 400
    if find_tournament(tournament_id) is None:
        return jsonify({'error': 'Tournament not found'}), 404
    try:
        from_snapshot(app_state, get_settings())
    except (InvalidTransition, KeyError, TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid appState: {e}'}), 400

    with _data_lock():
        save_state(tournament_id, app_state)
    return jsonify({'success': True})


@app.route('/api/tournaments/<int:tournament_id>/state', methods=['GET'])
def get_tournament_state(tournament_id):
    entry = find_tournament(tournament_id)
    if entry is None:
        return jsonify({'error': 'Tournament not found'}), 404
    return jsonify({
        'tournament': _tournament_payload(entry, with_state=True),
        'teams': load_teams(tournament_id),
        'matches': load_matches(tournament_id),
        'events': load_events(tournament_id),
    })


@app.route('/api/teams', methods=['POST'])
def add_team():
    """Record a team entered for a tournament."""
    data = request.get_json(silent=True) or {}
    tournament_id, error = _posted_tournament_id(data)
    if error:
        return error
    name = str(data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Missing team name'}), 400

    with _data_lock():
        team_id = _append_records(tournament_id, TEAMS_FILE_NAME, TEAM_FIELDS, [dict(data, name=name)])[0]
    app.logger.info(f'Team {name} added to tournament {tournament_id}')
    return jsonify({'id': team_id})


@app.route('/api/matches', methods=['POST'])
def add_match():
    """Record a scheduled match of a tournament."""
    data = request.get_json(silent=True) or {}
    tournament_id, error = _posted_tournament_id(data)
    if error:
        return error
    if not data.get('p1') or not data.get('p2'):
        return jsonify({'error': 'A match needs p1 and p2'}), 400

    with _data_lock():
        match_id = _append_records(tournament_id, MATCHES_FILE_NAME, MATCH_FIELDS, [data])[0]
    return jsonify({'id': match_id})


@app.route('/api/events', methods=['POST'])
def log_event():
    """Append one match event sent by the client."""
    data = request.get_json(silent=True) or {}
    tournament_id, error = _posted_tournament_id(data)
    if error:
        return error

    with _data_lock():
        event_id = append_events(tournament_id, [data])[0]
    return jsonify({'id': event_id})


@app.route('/api/tournaments/<int:tournament_id>/actions', methods=['POST'])
def run_action(tournament_id):
    """Apply one engine action to the stored tournament and save the result."""
    data = request.get_json(silent=True) or {}
    action = data.get('action')
    params = data.get('params') or {}
    if not action:
        return jsonify({'error': 'Missing action'}), 400
    if not isinstance(params, dict):
        return jsonify({'error': 'params must be an object'}), 400
    if find_tournament(tournament_id) is None:
        return jsonify({'error': 'Tournament not found'}), 404

    with _data_lock():
        snapshot = load_state(tournament_id)
        settings = get_settings()
        events = []
        if snapshot:
            orchestrator = TournamentOrchestrator.restore(snapshot, settings, on_event=events.append)
        else:
            orchestrator = TournamentOrchestrator(settings=settings, on_event=events.append)
        try:
            orchestrator.dispatch(action, **params)
        except InvalidTransition as e:
            return jsonify({'error': str(e)}), 400
        except TypeError as e:
            return jsonify({'error': f'Bad parameters for {action}: {e}'}), 400

        app_state = orchestrator.snapshot()
        save_state(tournament_id, app_state)
        if events:
            append_events(tournament_id, events)

    return jsonify({'appState': app_state})


@app.route('/api/tournaments/<int:tournament_id>/shooters', methods=['GET'])
def get_top_shooters(tournament_id):
    """Top shooters; ?phase=all|groups|playoffs&hide_unknown=1&limit=10"""
    if find_tournament(tournament_id) is None:
        return jsonify({'error': 'Tournament not found'}), 404
    snapshot = load_state(tournament_id)
    if not snapshot:
        return jsonify({'shooters': []})

    phase = request.args.get('phase', 'all')
    hide_unknown = request.args.get('hide_unknown', '1').lower() not in ('0', 'false', 'no')
    try:
        limit = int(request.args.get('limit', 10))
    except ValueError:
        return jsonify({'error': 'limit must be a number'}), 400

    try:
        shooters = top_shooters(from_snapshot(snapshot, get_settings()), phase, hide_unknown, limit)
    except InvalidTransition as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'shooters': shooters})


if __name__ == '__main__':
    app.run(debug=True, port=5000)
