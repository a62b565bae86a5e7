"""Per-repository record: discovery snapshot plus incrementally collected attributes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional

SNAPSHOT_FIELDS = (
    "description",
    "fork",
    "created_at",
    "updated_at",
    "pushed_at",
    "size",
    "stargazers_count",
    "watchers_count",
    "forks_count",
    "open_issues_count",
    "language",
    "license",
    "topics",
    "has_issues",
    "has_projects",
    "has_downloads",
    "has_wiki",
    "has_pages",
)


class RepositoryIdentity(NamedTuple):
    owner: str
    name: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class RepositoryRecord:
    """One repository.

    `attributes` is sparse: a missing key means "not collected yet", while a
    present key means done, even when the value is False, 0 or None.
    """

    owner: str
    name: str
    default_branch: str = "main"
    snapshot: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> RepositoryIdentity:
        return RepositoryIdentity(self.owner, self.name)

    @property
    def full_name(self) -> str:
        return str(self.identity)

    def has(self, key: str) -> bool:
        return key in self.attributes

    def has_all(self, *keys: str) -> bool:
        return all(key in self.attributes for key in keys)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "default_branch": self.default_branch,
            "snapshot": dict(self.snapshot),
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepositoryRecord":
        return cls(
            owner=data["owner"],
            name=data["name"],
            default_branch=data.get("default_branch") or "main",
            snapshot=dict(data.get("snapshot") or {}),
            attributes=dict(data.get("attributes") or {}),
        )

    @classmethod
    def from_search_item(cls, item: Dict[str, Any]) -> "RepositoryRecord":
        """Build a fresh record from one repository search result."""
        owner = (item.get("owner") or {}).get("login")
        license_info: Optional[Dict[str, Any]] = item.get("license")
        snapshot = {key: item.get(key) for key in SNAPSHOT_FIELDS}
        snapshot["license"] = (license_info or {}).get("spdx_id")
        snapshot["topics"] = list(item.get("topics") or [])
        return cls(
            owner=owner,
            name=item.get("name"),
            default_branch=item.get("default_branch") or "main",
            snapshot=snapshot,
        )


__all__ = ["SNAPSHOT_FIELDS", "RepositoryIdentity", "RepositoryRecord"]
