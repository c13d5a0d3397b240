# SPDX-License-Identifier: MIT
"""
mdstore User Directory

Compiles user/team configuration into a read-only membership structure.
Users are referenced as ``@handle`` and teams as ``@team/name``. A team's
``teams`` list names the teams it contains, so membership flows upward: a
user in ``platform`` is also a member of every team that contains
``platform``, directly or transitively.

Configuration:

    users:
      alice:
        name: Alice Smith
        teams: [platform]
    teams:
      platform:
        name: Platform Team
      engineering:
        teams: [platform, security]
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

TEAM_PREFIX = "@team/"

# @handle or @team/name
HANDLE_RE = re.compile(r"^@[A-Za-z0-9][A-Za-z0-9_.-]*$")
TEAM_REF_RE = re.compile(r"^@team/[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class User:
    handle: str
    name: Optional[str] = None
    email: Optional[str] = None
    teams: Tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Team:
    name: str
    display_name: Optional[str] = None
    teams: Tuple[str, ...] = ()  # member teams contained by this one
    extra: Mapping[str, Any] = field(default_factory=dict)


def is_valid_syntax(reference: str) -> bool:
    """True for ``@handle`` and ``@team/name`` shaped strings."""
    return bool(HANDLE_RE.match(reference) or TEAM_REF_RE.match(reference))


class UserDirectory:
    """Users, teams and the team-contains-team relation."""

    def __init__(self, users: Dict[str, User], teams: Dict[str, Team]) -> None:
        self.users = users
        self.teams = teams
        parents: Dict[str, List[str]] = {}
        for team in teams.values():
            for member in team.teams:
                parents.setdefault(member, []).append(team.name)
        self._parents = parents

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve_handle(self, reference: str) -> Optional[User]:
        if not reference.startswith("@") or reference.startswith(TEAM_PREFIX):
            return None
        return self.users.get(reference[1:])

    def resolve_team(self, reference: str) -> Optional[Team]:
        if not reference.startswith(TEAM_PREFIX):
            return None
        return self.teams.get(reference[len(TEAM_PREFIX):])

    def resolve(self, reference: str) -> Optional[Union[User, Team]]:
        """Resolve either reference form."""
        if reference.startswith(TEAM_PREFIX):
            return self.resolve_team(reference)
        return self.resolve_handle(reference)

    def all_handles(self) -> List[str]:
        handles = [f"@{h}" for h in sorted(self.users)]
        handles.extend(f"{TEAM_PREFIX}{t}" for t in sorted(self.teams))
        return handles

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _walk(self, start: Iterable[str], edges: Mapping[str, Iterable[str]]) -> Set[str]:
        """Breadth-first closure guarded by a visited set, so cycles terminate."""
        visited: Set[str] = set()
        queue: Deque[str] = deque(start)
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            queue.extend(n for n in edges.get(current, ()) if n not in visited)
        return visited

    def teams_of(self, user: Union[User, str]) -> Set[str]:
        """Every team the user belongs to, directly or through containing teams."""
        if isinstance(user, str):
            resolved = self.resolve_handle(user) if user.startswith("@") else self.users.get(user)
            if resolved is None:
                return set()
            user = resolved
        return self._walk(user.teams, self._parents)

    def is_member(self, user: Union[User, str], team: Union[Team, str]) -> bool:
        """
        True if ``team`` is in the transitive closure of the user's teams.

        Cyclic team definitions are tolerated; they never change the answer.
        """
        if isinstance(team, Team):
            name = team.name
        else:
            name = team[len(TEAM_PREFIX):] if team.startswith(TEAM_PREFIX) else team
        return name in self.teams_of(user)

    def expand_team_members(self, team: Union[Team, str]) -> Set[str]:
        """User handles (without ``@``) in the team or any team it contains."""
        name = team.name if isinstance(team, Team) else team
        if name.startswith(TEAM_PREFIX):
            name = name[len(TEAM_PREFIX):]
        children = {t.name: t.teams for t in self.teams.values()}
        teams = self._walk([name], children)
        return {h for h, u in self.users.items() if teams.intersection(u.teams)}


# =============================================================================
# Compilation
# =============================================================================


def _string_list(value: Any, owner: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{owner}: 'teams' must be a list of team names")
    return tuple(value)


def _entries(config: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = config.get(key)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"'{key}' must be a mapping")
    for name, attrs in section.items():
        if not isinstance(name, str):
            raise ConfigError(f"{key[:-1]} key {name!r} must be a string")
        if not isinstance(attrs, Mapping):
            raise ConfigError(f"{key[:-1]} '{name}' must be a mapping")
    return section


def compile_users(config: Any) -> UserDirectory:
    """
    Compile a user/team configuration mapping.

    Raises:
        ConfigError: If the configuration is structurally invalid
    """
    if config is None:
        config = {}
    if not isinstance(config, Mapping):
        raise ConfigError("user config must be a mapping")

    users: Dict[str, User] = {}
    for handle, attrs in _entries(config, "users").items():
        users[handle] = User(
            handle=handle,
            name=attrs.get("name"),
            email=attrs.get("email"),
            teams=_string_list(attrs.get("teams"), f"user '{handle}'"),
            extra={k: v for k, v in attrs.items() if k not in ("name", "email", "teams")},
        )

    teams: Dict[str, Team] = {}
    for name, attrs in _entries(config, "teams").items():
        teams[name] = Team(
            name=name,
            display_name=attrs.get("name"),
            teams=_string_list(attrs.get("teams"), f"team '{name}'"),
            extra={k: v for k, v in attrs.items() if k not in ("name", "teams")},
        )

    logger.debug("compiled user directory: %d user(s), %d team(s)", len(users), len(teams))
    return UserDirectory(users, teams)


def users_from_yaml(text: str) -> UserDirectory:
    """
    Compile a user directory from YAML text.

    Raises:
        ConfigError: If the YAML is invalid or structurally wrong
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"user config is not valid YAML: {e}")
    return compile_users(data)


def load_users(path: Union[str, Path]) -> UserDirectory:
    with open(path, "r", encoding="utf-8") as f:
        return users_from_yaml(f.read())
