# Command line entry point: draw groups or a bracket from a teams file

import argparse
import os
import random
import sys

import yaml

from core.elimination import generate_bracket, get_round_name
from core.groups import generate_groups
from core.models import InvalidTransition, Team, teams_from_list
from core.settings import load_settings


def load_teams(file_path):
    """Read ``{team name: [players]}`` (or a plain list of names) from YAML."""
    with open(file_path, mode='r', encoding='utf-8') as file:
        data = yaml.safe_load(file) or {}
    if isinstance(data, dict):
        items = [Team(str(name), players or []) for name, players in data.items()]
    else:
        items = list(data)
    return teams_from_list(items)


def print_groups(groups):
    for group in groups:
        print(f"\nGroup {group.name}")
        for team in group.teams:
            roster = f" ({', '.join(team.players)})" if team.players else ""
            print(f"  {team.name}{roster}")
        print("  Matches:")
        for match in group.matches:
            print(f"    {match.id}: {match.p1.name} vs {match.p2.name}")


def print_bracket(bracket):
    first_round = bracket.rounds[0]
    print(f"\n{get_round_name(len(first_round))}")
    for match in first_round:
        if match.is_bye:
            print(f"  {match.id}: {match.p1.name} (bye)")
        else:
            print(f"  {match.id}: {match.p1.name} vs {match.p2.name}")
    for round_matches in bracket.rounds[1:]:
        print(f"{get_round_name(len(round_matches))}: {len(round_matches)} match(es)")


def main(argv=None):
    parser = argparse.ArgumentParser(description='Draw a beer pong tournament from a teams file.')
    parser.add_argument('teams_file', help='YAML file mapping team names to player lists')
    parser.add_argument('--groups', type=int, help='number of groups (omit for a straight bracket)')
    parser.add_argument('--advance', type=int, default=2, help='teams advancing per group')
    parser.add_argument('--seed', type=int, help='random seed for the group draw')
    parser.add_argument('--settings', help='settings YAML overriding the defaults')
    args = parser.parse_args(argv)

    if not os.path.exists(args.teams_file):
        print(f"Error: {args.teams_file} not found", file=sys.stderr)
        return 1

    try:
        teams = load_teams(args.teams_file)
        if len(teams) < 2:
            print("Need at least 2 teams. Check the teams file.", file=sys.stderr)
            return 1

        if args.groups:
            settings = load_settings(args.settings)
            if len(teams) < settings['min_teams_for_groups']:
                print(f"Groups need at least {settings['min_teams_for_groups']} teams", file=sys.stderr)
                return 1
            rng = random.Random(args.seed) if args.seed is not None else None
            groups = generate_groups(teams, args.groups, args.advance, rng)
            print(f"--- Group Stage ({len(teams)} teams, top {args.advance} advance) ---")
            print_groups(groups)
        else:
            bracket = generate_bracket(teams)
            print(f"--- Bracket ({len(teams)} teams) ---")
            print_bracket(bracket)
    except InvalidTransition as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
