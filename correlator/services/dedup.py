"""Collapse per-product component lists into one platform-wide distinct set."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

from correlator.services.cpe import canonical_ecosystem


class ComponentLike(Protocol):
    name: str
    version: str
    ecosystem: str
    purl: str | None


class ComponentKey(NamedTuple):
    """Identity of a distinct component: (name, ecosystem, version)."""

    name: str
    ecosystem: str
    version: str


@dataclass
class DedupResult:
    """
    distinct_components: each (name, ecosystem, version) once, in first-seen order.
    owners: key -> sorted product ids declaring it.
    purls: key -> first purl seen for it, if any.
    total_components: valid component entries across all products, before dedup.
    """

    distinct_components: list[ComponentKey] = field(default_factory=list)
    owners: dict[ComponentKey, list[str]] = field(default_factory=dict)
    purls: dict[ComponentKey, str | None] = field(default_factory=dict)
    total_components: int = 0


def component_key(name: str, ecosystem: str, version: str) -> ComponentKey | None:
    """Normalized key, or None when name, version or ecosystem is blank."""
    name = (name or "").strip()
    version = (version or "").strip()
    ecosystem = canonical_ecosystem(ecosystem)
    if not name or not version or not ecosystem:
        return None
    return ComponentKey(name, ecosystem, version)


def deduplicate_components(
    product_components: Mapping[str, Iterable[ComponentLike]],
) -> DedupResult:
    """
    Group components of all products by (name, ecosystem, version).

    Names are trimmed and ecosystems canonicalized (case-insensitive) before
    grouping; entries with a blank name or version are dropped. A product that
    lists the same component twice owns it once.
    """
    result = DedupResult()
    owner_sets: dict[ComponentKey, set[str]] = {}
    for product_id, components in product_components.items():
        for component in components:
            key = component_key(component.name, component.ecosystem, component.version)
            if key is None:
                continue
            result.total_components += 1
            owners = owner_sets.get(key)
            if owners is None:
                owners = owner_sets[key] = set()
                result.distinct_components.append(key)
                result.purls[key] = getattr(component, "purl", None)
            elif result.purls[key] is None:
                result.purls[key] = getattr(component, "purl", None)
            owners.add(product_id)
    result.owners = {key: sorted(products) for key, products in owner_sets.items()}
    return result
