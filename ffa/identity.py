"""Manager identity resolution.

Managers are identified durably by their canonical name, which is stable
across seasons. The provider hands out season-specific identifiers in two
different namespaces:

    entry         - the fantasy entry id (used by the picks endpoint)
    league_entry  - the league-entry id (used inside fixture records)

Everything past the feed boundary joins on ManagerId only. The resolver
fails loudly on unknown identifiers instead of returning an empty lookup,
so a namespace mix-up cannot silently turn live overrides into no-ops.

Usage:
    resolver = IdentityResolver(canonical=["PATRICK", "DAVID"], aliases={"DAVE": "DAVID"})
    resolver.register(ENTRY, 164475, "David")
    resolver.resolve(ENTRY, 164475)          # -> ManagerId("DAVID")
    resolver.resolve(LEAGUE_ENTRY, 164475)   # -> IdentifierMismatch
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ffa.errors import IdentifierMismatch

logger = logging.getLogger(__name__)

ENTRY = "entry"
LEAGUE_ENTRY = "league_entry"

NAMESPACES = (ENTRY, LEAGUE_ENTRY)


def normalize_manager_name(value: object) -> str:
    """Trim and upper-case a raw manager name ("  Matt " -> "MATT")."""
    return " ".join(str(value if value is not None else "").split()).upper()


class ManagerId(str):
    """Canonical manager identity.

    A str subclass so dict keys stay readable, while isinstance() checks at
    computation boundaries can reject ids from the provider namespaces.
    """

    __slots__ = ()

    def __new__(cls, value: str):
        normalized = normalize_manager_name(value)
        if not normalized:
            raise IdentifierMismatch("manager", value, "empty manager name")
        return super().__new__(cls, normalized)

    def __repr__(self) -> str:
        return f"ManagerId({str.__repr__(self)})"


@dataclass(frozen=True)
class ExternalRef:
    """A season-specific provider identifier."""

    namespace: str
    value: str

    @classmethod
    def of(cls, namespace: str, value: object) -> "ExternalRef":
        if namespace not in NAMESPACES:
            raise ValueError(f"Unknown identifier namespace: {namespace}")
        return cls(namespace=namespace, value=str(value).strip())


class IdentityResolver:
    """Maps provider identifiers and name variants to ManagerId."""

    def __init__(
        self,
        canonical: Optional[Iterable[str]] = None,
        aliases: Optional[dict[str, str]] = None,
    ):
        self._canonical: Optional[set[str]] = (
            {normalize_manager_name(c) for c in canonical} if canonical else None
        )
        self._aliases = {
            normalize_manager_name(k): normalize_manager_name(v)
            for k, v in (aliases or {}).items()
        }
        self._refs: dict[ExternalRef, ManagerId] = {}

    def canonical_name(self, raw_name: object) -> ManagerId:
        """Fold aliases and validate against the canonical manager list."""
        name = normalize_manager_name(raw_name)
        name = self._aliases.get(name, name)
        if not name:
            raise IdentifierMismatch("manager", raw_name, "empty manager name")
        if self._canonical is not None and name not in self._canonical:
            raise IdentifierMismatch("manager", raw_name, "not a canonical manager")
        return ManagerId(name)

    def register(self, namespace: str, value: object, manager_name: object) -> ManagerId:
        """Bind a provider identifier to a manager for this season."""
        manager = self.canonical_name(manager_name)
        ref = ExternalRef.of(namespace, value)
        existing = self._refs.get(ref)
        if existing is not None and existing != manager:
            raise IdentifierMismatch(
                namespace, value, f"already bound to {existing}, refusing {manager}"
            )
        self._refs[ref] = manager
        return manager

    def resolve(self, namespace: str, value: object) -> ManagerId:
        """Resolve a provider identifier. Raises IdentifierMismatch if unknown."""
        ref = ExternalRef.of(namespace, value)
        manager = self._refs.get(ref)
        if manager is None:
            raise IdentifierMismatch(namespace, value)
        return manager

    def try_resolve(self, namespace: str, value: object) -> Optional[ManagerId]:
        """Resolve or log-and-skip; used by batch paths that exclude bad rows."""
        try:
            return self.resolve(namespace, value)
        except IdentifierMismatch as e:
            logger.warning(f"[IDENTITY] Excluding unresolved reference: {e}")
            from ffa.telemetry.metrics import record_identifier_mismatch
            record_identifier_mismatch(namespace)
            return None

    def refs_for(self, manager: ManagerId, namespace: str) -> list[str]:
        """All provider identifiers in a namespace bound to a manager."""
        return [
            ref.value
            for ref, m in self._refs.items()
            if m == manager and ref.namespace == namespace
        ]


def parse_aliases(raw: str) -> dict[str, str]:
    """Parse "MATTHEW:MATT,DAVE:DAVID" into a mapping."""
    aliases: dict[str, str] = {}
    for part in (raw or "").split(","):
        part = part.strip()
        if not part or ":" not in part:
            continue
        alias, canonical = (normalize_manager_name(p) for p in part.split(":", 1))
        if alias and canonical:
            aliases[alias] = canonical
    return aliases
