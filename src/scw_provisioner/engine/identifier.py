"""Composite resource identifiers.

An identifier is the only durable handle kept in state for a resource. Its
text form is ``locality/remoteID`` or ``locality/remoteID/subName``; the
separator and the component order must never change, or previously persisted
state becomes unreadable.
"""

from __future__ import annotations

from dataclasses import dataclass

from scw_provisioner.engine.errors import MalformedIdentifierError
from scw_provisioner.engine.locality import Scope, is_known

SEPARATOR = "/"


@dataclass(frozen=True, slots=True)
class Identifier:
    locality: str
    remote_id: str
    sub_name: str | None = None

    @property
    def arity(self) -> int:
        return 2 if self.sub_name is None else 3

    def encode(self) -> str:
        parts = [self.locality, self.remote_id]
        if self.sub_name is not None:
            parts.append(self.sub_name)
        return SEPARATOR.join(parts)

    def __str__(self) -> str:
        return self.encode()

    @property
    def parent(self) -> str:
        """``locality/remoteID``: the parent reference of a sub-resource."""
        return f"{self.locality}{SEPARATOR}{self.remote_id}"

    @classmethod
    def decode(
        cls,
        raw: str,
        *,
        arity: int | None = None,
        scope: Scope | None = None,
    ) -> Identifier:
        """Parse an identifier string.

        ``arity`` is the expected component count (2 for simple resources,
        3 for sub-resources); ``None`` accepts either. ``scope`` restricts the
        locality to regions or zones.

        Raises:
            MalformedIdentifierError: the string does not parse completely.
        """
        if not isinstance(raw, str) or not raw:
            raise MalformedIdentifierError(str(raw), "empty identifier")

        parts = raw.split(SEPARATOR)
        expected = (arity,) if arity is not None else (2, 3)
        if len(parts) not in expected:
            want = " or ".join(str(n) for n in expected)
            raise MalformedIdentifierError(raw, f"expected {want} components, got {len(parts)}")
        if any(not p for p in parts):
            raise MalformedIdentifierError(raw, "empty component")

        locality = parts[0]
        if not is_known(locality, scope):
            kind = scope or "locality"
            raise MalformedIdentifierError(raw, f"unknown {kind} {locality!r}")

        return cls(
            locality=locality,
            remote_id=parts[1],
            sub_name=parts[2] if len(parts) == 3 else None,
        )


def split_locality(value: str, *, scope: Scope | None = None) -> tuple[str | None, str]:
    """Split a dependency reference given as ``locality/id`` or as a bare ``id``."""
    if SEPARATOR not in value:
        if not value:
            raise MalformedIdentifierError(value, "empty reference")
        return None, value
    ident = Identifier.decode(value, arity=2, scope=scope)
    return ident.locality, ident.remote_id
