from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from lark import Lark, ParseTree, Token, Transformer, v_args
from lark.exceptions import LarkError

from pkgstage.errors import InvalidRequirement

from .grammar import REQUIREMENT_GRAMMAR


@dataclass(frozen=True, slots=True)
class PackageRequirement:
    vendor: str
    name: str
    constraint: str | None = None

    @property
    def package(self) -> str:
        return f"{self.vendor}/{self.name}"

    def __str__(self) -> str:
        if self.constraint is None:
            return self.package
        return f"{self.package}:{self.constraint}"


class _RequirementTransformer(Transformer[Token, PackageRequirement]):
    @v_args(inline=True)
    def start(self, package: str, constraint: str | None = None) -> PackageRequirement:
        vendor, name = package.split("/", 1)
        return PackageRequirement(vendor=vendor, name=name, constraint=constraint)

    def PACKAGE(self, tok: Token) -> str:
        # Composer package names are case-insensitive and stored lowercase
        return str(tok.value).lower()

    def CONSTRAINT(self, tok: Token) -> str:
        return str(tok.value).strip()


_PARSER = Lark(
    REQUIREMENT_GRAMMAR,
    start="start",
    parser="lalr",
    lexer="contextual",
    cache=False,
)


def parse_requirement(text: str) -> PackageRequirement:
    """Parse 'vendor/name', 'vendor/name:constraint' or 'vendor/name constraint'."""
    try:
        tree: ParseTree = _PARSER.parse(text.strip())
    except LarkError as e:
        raise InvalidRequirement(f"Invalid package requirement {text!r}: {e}") from e
    return _RequirementTransformer().transform(tree)


def parse_requirements(items: Iterable[str | PackageRequirement]) -> tuple[PackageRequirement, ...]:
    """Parse many requirements; a package may appear at most once."""
    out: list[PackageRequirement] = []
    seen: set[str] = set()
    for item in items:
        req = item if isinstance(item, PackageRequirement) else parse_requirement(item)
        if req.package in seen:
            raise InvalidRequirement(f"Package {req.package} is required more than once.")
        seen.add(req.package)
        out.append(req)
    return tuple(out)
