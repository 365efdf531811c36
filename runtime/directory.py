"""
Approver lookup: which users hold the roles a step allows.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

from hrflow.ir.schema import Actor, Role


class ApproverDirectory(Protocol):
    def approvers_for(self, roles: Iterable[Role]) -> List[Actor]:
        ...


class StaticApproverDirectory:
    """Fixed role -> users table, for tests, samples and single-process setups."""

    def __init__(self, members: Optional[Dict[Role, Iterable[str]]] = None) -> None:
        self._members: Dict[Role, List[str]] = {}
        for role, users in (members or {}).items():
            for user_id in users:
                self.add(user_id, role)

    def add(self, user_id: str, role: Role) -> None:
        users = self._members.setdefault(Role(role), [])
        if user_id not in users:
            users.append(user_id)

    def approvers_for(self, roles: Iterable[Role]) -> List[Actor]:
        """One entry per distinct user, in role declaration order then insertion order."""

        wanted = set(roles)
        seen = set()
        approvers: List[Actor] = []
        for role in Role:
            if role not in wanted:
                continue
            for user_id in self._members.get(role, []):
                if user_id in seen:
                    continue
                seen.add(user_id)
                approvers.append(Actor(user_id=user_id, role=role))
        return approvers
