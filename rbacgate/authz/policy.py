from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

# Role name that grants a permission to every account.
DEFAULT_ROLE = "default"

# (requirement_tag, role_name) pairs collected from Group roles.
GroupRequirements = List[Tuple[str, str]]


class PolicyFormatError(ValueError):
    """Raised when an RBAC document does not have the expected shape."""


def _freeze_map(d: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(d))


def _str_tuple(value: Any, *, what: str) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise PolicyFormatError(f"{what} must be a list of strings")
    out = []
    for x in value:
        if not isinstance(x, str):
            raise PolicyFormatError(f"{what} must be a list of strings")
        out.append(x)
    return tuple(out)


@dataclass(frozen=True)
class Member:
    """Role granted directly to a list of accounts."""

    accounts: Tuple[str, ...] = ()

    def to_data(self) -> List[str]:
        return list(self.accounts)


@dataclass(frozen=True)
class Group:
    """Role whose members are partitioned by a requirement tag."""

    requirements: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        frozen = {
            str(k): _str_tuple(v, what=f"group role requirement {k!r}") for k, v in dict(self.requirements).items()
        }
        object.__setattr__(self, "requirements", MappingProxyType(frozen))

    def to_data(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self.requirements.items()}


Role = Union[Member, Group]


def parse_role(value: Any) -> Role:
    """
    Decode an untagged role value.

    A list of strings is a Member role, a mapping of tag -> list of strings is a
    Group role. Lists are tried first, so `[]` is an empty Member and `{}` an
    empty Group.
    """
    if isinstance(value, (list, tuple)):
        return Member(accounts=_str_tuple(value, what="member role"))
    if isinstance(value, Mapping):
        reqs: Dict[str, Tuple[str, ...]] = {}
        for tag, accounts in value.items():
            if not isinstance(tag, str):
                raise PolicyFormatError("group role requirement tags must be strings")
            reqs[tag] = _str_tuple(accounts, what=f"group role requirement {tag!r}")
        return Group(requirements=reqs)
    raise PolicyFormatError(f"role must be a list or a mapping, got {type(value).__name__}")


@dataclass(frozen=True)
class Permission:
    role: Tuple[str, ...] = ()
    comment: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Permission":
        if not isinstance(data, Mapping):
            raise PolicyFormatError("permission must be a mapping with a `role` list")
        comment = data.get("comment")
        if comment is not None and not isinstance(comment, str):
            raise PolicyFormatError("permission comment must be a string")
        return cls(role=_str_tuple(data.get("role", []), what="permission role"), comment=comment)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": list(self.role), "comment": self.comment}


@dataclass(frozen=True)
class ActionGrant:
    granted: bool
    group_requirements: Optional[GroupRequirements] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class PolicyConfig:
    """
    An RBAC document: named roles plus page -> action -> Permission.

    Instances are immutable; updates replace the whole document.
    """

    name: str = ""
    role: Mapping[str, Role] = field(default_factory=lambda: MappingProxyType({}))
    permission: Mapping[str, Mapping[str, Permission]] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", _freeze_map(self.role))
        pages = {page: _freeze_map(actions) for page, actions in dict(self.permission).items()}
        object.__setattr__(self, "permission", MappingProxyType(pages))

    @classmethod
    def empty(cls) -> "PolicyConfig":
        return cls()

    @classmethod
    def from_dict(cls, data: Any) -> "PolicyConfig":
        if not isinstance(data, Mapping):
            raise PolicyFormatError("policy document must be a mapping")
        name = data.get("name") or ""
        if not isinstance(name, str):
            raise PolicyFormatError("policy name must be a string")

        raw_roles = data.get("role") or {}
        if not isinstance(raw_roles, Mapping):
            raise PolicyFormatError("`role` must be a mapping of role name -> role")
        roles = {str(k): parse_role(v) for k, v in raw_roles.items()}

        raw_perms = data.get("permission") or {}
        if not isinstance(raw_perms, Mapping):
            raise PolicyFormatError("`permission` must be a mapping of page -> actions")
        perms: Dict[str, Dict[str, Permission]] = {}
        for page, actions in raw_perms.items():
            if not isinstance(actions, Mapping):
                raise PolicyFormatError(f"permission page {page!r} must map actions to permissions")
            perms[str(page)] = {str(a): Permission.from_dict(p) for a, p in actions.items()}

        return cls(name=name, role=roles, permission=perms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "role": {k: v.to_data() for k, v in self.role.items()},
            "permission": {
                page: {action: p.to_dict() for action, p in actions.items()}
                for page, actions in self.permission.items()
            },
        }

    def check_user_action(self, account: str, page: str, action: str) -> Tuple[bool, Optional[GroupRequirements]]:
        return resolve(self, account, page, action)

    def user_permissions(self, account: str, *, include_ungranted: bool = False) -> Dict[str, Dict[str, ActionGrant]]:
        return resolve_all(self, account, include_ungranted=include_ungranted)


def _evaluate(policy: PolicyConfig, account: str, permission: Permission) -> Tuple[bool, Optional[GroupRequirements]]:
    # Direct grants short-circuit; group roles are only consulted afterwards.
    for role_name in permission.role:
        if role_name == DEFAULT_ROLE:
            return True, None
        role = policy.role.get(role_name)
        if isinstance(role, Member) and account in role.accounts:
            return True, None

    requirements: GroupRequirements = []
    for role_name in permission.role:
        role = policy.role.get(role_name)
        if not isinstance(role, Group):
            continue
        for tag, accounts in role.requirements.items():
            if account in accounts:
                requirements.append((tag, role_name))

    if requirements:
        return True, requirements
    return False, None


def resolve(policy: PolicyConfig, account: str, page: str, action: str) -> Tuple[bool, Optional[GroupRequirements]]:
    """
    Decide whether `account` may perform `action` on `page`.

    Returns (granted, group_requirements). A grant through `default` or a Member
    role carries no requirements; a grant through Group roles lists every matching
    (requirement_tag, role_name) pair.
    """
    actions = policy.permission.get(page)
    if actions is None:
        return False, None
    permission = actions.get(action)
    if permission is None:
        return False, None
    return _evaluate(policy, account, permission)


def resolve_all(
    policy: PolicyConfig, account: str, *, include_ungranted: bool = False
) -> Dict[str, Dict[str, ActionGrant]]:
    """
    Apply `resolve` to every (page, action) pair of the document.

    Every page appears in the result. Ungranted actions are omitted unless
    `include_ungranted` is set.
    """
    result: Dict[str, Dict[str, ActionGrant]] = {}
    for page, actions in policy.permission.items():
        page_result: Dict[str, ActionGrant] = {}
        for action in sorted(actions):
            permission = actions[action]
            granted, requirements = _evaluate(policy, account, permission)
            if granted or include_ungranted:
                page_result[action] = ActionGrant(
                    granted=granted, group_requirements=requirements, comment=permission.comment
                )
        result[page] = page_result
    return result


def grants_to_dict(grants: Dict[str, Dict[str, ActionGrant]]) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """JSON-friendly view of `resolve_all` output."""
    return {
        page: {
            action: {
                "granted": g.granted,
                "require": [list(x) for x in g.group_requirements] if g.group_requirements is not None else None,
                "comment": g.comment,
            }
            for action, g in actions.items()
        }
        for page, actions in grants.items()
    }


def load_policy_file(path: str | Path) -> PolicyConfig:
    """Load a policy document from a YAML or JSON file."""
    p = Path(path)
    with open(p, "r", encoding="utf-8") as f:
        raw = f.read()
    if p.suffix.lower() == ".json":
        data = json.loads(raw) if raw.strip() else {}
    else:
        data = yaml.safe_load(raw) or {}
    return PolicyConfig.from_dict(data)
