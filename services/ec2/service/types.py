from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class LaunchResult:
    instance_ids: list[str]
    image_id: str
    request_params: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class StartResult:
    label: str
    instance_ids: list[str]
