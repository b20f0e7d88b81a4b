from __future__ import annotations

from pkgstage.requirements.parse import (
    PackageRequirement,
    parse_requirement,
    parse_requirements,
)

__all__ = ["PackageRequirement", "parse_requirement", "parse_requirements"]
