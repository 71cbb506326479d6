from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class GroupResult:
    """Transient algorithm output prior to persistence."""

    group_name: str
    member_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"group_name": self.group_name, "member_ids": list(self.member_ids)}


def name_groups(prefix: str, memberships: list[list[str]]) -> list[GroupResult]:
    return [
        GroupResult(group_name=f"{prefix} {index}", member_ids=members)
        for index, members in enumerate(memberships, start=1)
    ]
