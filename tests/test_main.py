"""
Tests for the command line draw.
"""
import sys
import os
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from main import load_teams, main


def write_teams(tmp_path, teams):
    path = tmp_path / 'teams.yaml'
    path.write_text(yaml.dump(teams, sort_keys=False))
    return str(path)


class TestLoadTeams:
    """Tests for reading the teams file."""

    def test_mapping_with_rosters(self, tmp_path):
        path = write_teams(tmp_path, {'Red': ['Ann', 'Bob'], 'Blue': None})
        teams = load_teams(path)
        assert [t.name for t in teams] == ['Red', 'Blue']
        assert teams[0].players == ['Ann', 'Bob']
        assert teams[1].players == []

    def test_plain_list(self, tmp_path):
        path = write_teams(tmp_path, ['Red', 'Blue', 'Gold'])
        assert [t.name for t in load_teams(path)] == ['Red', 'Blue', 'Gold']


class TestMain:
    """Tests for the draw command."""

    def test_bracket_draw(self, tmp_path, capsys):
        path = write_teams(tmp_path, ['A', 'B', 'C', 'D', 'E'])
        assert main([path]) == 0
        out = capsys.readouterr().out
        assert 'A vs B' in out
        assert 'E (bye)' in out
        assert 'Final' in out

    def test_group_draw(self, tmp_path, capsys):
        names = {f'Team {i}': [f'P{i}a', f'P{i}b'] for i in range(6)}
        path = write_teams(tmp_path, names)
        assert main([path, '--groups', '2', '--seed', '1']) == 0
        out = capsys.readouterr().out
        assert 'Group A' in out
        assert 'Group B' in out
        assert out.count(' vs ') == 6

    def test_too_few_teams_for_groups(self, tmp_path, capsys):
        path = write_teams(tmp_path, ['A', 'B', 'C'])
        assert main([path, '--groups', '1']) == 1
        assert 'at least 6' in capsys.readouterr().err

    def test_duplicate_teams(self, tmp_path, capsys):
        path = write_teams(tmp_path, ['A', 'A'])
        assert main([path]) == 1
        assert 'Duplicate' in capsys.readouterr().err

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / 'nope.yaml')]) == 1
