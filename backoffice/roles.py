from __future__ import annotations

from dataclasses import dataclass

SUPPORTED_ROLES = (
    "api",
    "worker-ocr",
)

WORKER_ROLES = frozenset({"worker-ocr"})


@dataclass(frozen=True)
class RuntimeRole:
    name: str

    @property
    def is_worker(self) -> bool:
        return self.name in WORKER_ROLES


def validate_role(role: str) -> RuntimeRole:
    if role in SUPPORTED_ROLES:
        return RuntimeRole(name=role)

    supported = ", ".join(SUPPORTED_ROLES)
    raise ValueError(
        f"Unsupported role '{role}'. Supported roles: {supported}. "
        "Note: database migrations are applied externally and are not an app role."
    )
