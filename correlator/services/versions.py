"""
Ecosystem-aware version ordering and range containment.

PyPI versions are ordered by PEP 440 (packaging). SemVer ecosystems (npm, crates.io,
Go, NuGet, Packagist, Hex, Pub) treat any hyphen suffix as a pre-release whose
dot-separated identifiers compare per SemVer: numeric identifiers numerically and
before alphanumeric ones, a shorter identifier list first. Every other
ecosystem (Maven, RubyGems, ...) uses a generic dotted-numeric ordering: the
numeric release segments are compared first (1.0 == 1.0.0), then a pre-release
qualifier (alpha, beta, rc, SNAPSHOT, ...) sorts before the plain release and a
post-release qualifier (1.0-1, 1.0.sp1) sorts after it. Build metadata after '+'
is ignored.
"""

import re
from typing import Any

from packaging.version import InvalidVersion, Version

# Ecosystems whose advisories use PEP 440 ordering.
_PEP440_ECOSYSTEMS = frozenset({"pypi"})
# Ecosystems that follow SemVer 2.0 pre-release precedence.
_SEMVER_ECOSYSTEMS = frozenset({"npm", "crates.io", "go", "nuget", "packagist", "hex", "pub"})

_RELEASE_RE = re.compile(r"^(\d+(?:\.\d+)*)(.*)$")
_TOKEN_RE = re.compile(r"\d+|[a-z]+")

# Well-known pre-release labels in ascending order; unknown labels sort after these.
_PRE_RELEASE_RANKS: dict[str, int] = {
    "dev": 0,
    "a": 1,
    "alpha": 1,
    "b": 2,
    "beta": 2,
    "m": 3,
    "milestone": 3,
    "pre": 3,
    "preview": 3,
    "c": 4,
    "cr": 4,
    "rc": 4,
    "snapshot": 5,
}
_UNKNOWN_PRE_RANK = 6

# Qualifiers that denote the release itself.
_FINAL_LABELS = frozenset({"final", "ga", "release"})
# Qualifiers that sort after the release.
_POST_LABELS = frozenset({"post", "p", "patch", "sp", "pl", "r", "rev"})

_PHASE_PRE = 0
_PHASE_FINAL = 1
_PHASE_POST = 2

# OSV uses "0" for "since the first version".
_UNBOUNDED_INTRODUCED = frozenset({"", "0"})


def _clean(raw: str) -> str:
    s = (raw or "").strip()
    if len(s) > 1 and s[0] in "vV" and s[1].isdigit():
        s = s[1:]
    return s.split("+", 1)[0].lower()


def _token_key(token: str) -> tuple[int, int, str]:
    if token.isdigit():
        return (0, int(token), "")
    return (1, _PRE_RELEASE_RANKS.get(token, _UNKNOWN_PRE_RANK), token)


def _split_release(s: str) -> tuple[tuple[int, ...], str]:
    """Numeric release segments without trailing zeros, and the remaining qualifier."""
    match = _RELEASE_RE.match(s)
    if match:
        release = [int(part) for part in match.group(1).split(".")]
        rest = match.group(2)
    else:
        release = []
        rest = s
    while release and release[-1] == 0:
        release.pop()
    return tuple(release), rest


def generic_version_key(raw: str) -> tuple[Any, ...]:
    """Return a sortable key for a dotted version string in any non-PEP 440 ecosystem."""
    release, rest = _split_release(_clean(raw))
    tokens = _TOKEN_RE.findall(rest)
    if not tokens:
        phase = _PHASE_FINAL
    elif tokens[0] in _FINAL_LABELS:
        phase = _PHASE_FINAL
        tokens = tokens[1:]
    elif tokens[0].isdigit() or tokens[0] in _POST_LABELS:
        phase = _PHASE_POST
    else:
        phase = _PHASE_PRE
    return (release, phase, tuple(_token_key(t) for t in tokens))


def _semver_identifier_key(identifier: str) -> tuple[int, int, str]:
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


def semver_version_key(raw: str) -> tuple[Any, ...]:
    """
    Sortable key for a SemVer-style version: 1.0.0-0 < 1.0.0-1 < 1.0.0-alpha < 1.0.0.

    Versions without a hyphen suffix are keyed like generic_version_key, so keys of
    both functions compare with each other.
    """
    release, rest = _split_release(_clean(raw))
    if not rest.startswith("-"):
        return generic_version_key(raw)
    identifiers = rest[1:].split(".")
    return (release, _PHASE_PRE, tuple(_semver_identifier_key(i) for i in identifiers))


def _uses_pep440(ecosystem: str | None) -> bool:
    return bool(ecosystem) and ecosystem.strip().lower() in _PEP440_ECOSYSTEMS


def _uses_semver(ecosystem: str | None) -> bool:
    return bool(ecosystem) and ecosystem.strip().lower() in _SEMVER_ECOSYSTEMS


def _pair_keys(a: str, b: str, ecosystem: str | None) -> tuple[Any, Any]:
    """Keys for two versions under one scheme, so mixed key types are never compared."""
    if _uses_pep440(ecosystem):
        try:
            return Version(a), Version(b)
        except InvalidVersion:
            pass
    if _uses_semver(ecosystem):
        return semver_version_key(a), semver_version_key(b)
    return generic_version_key(a), generic_version_key(b)


def compare_versions(a: str, b: str, ecosystem: str | None = None) -> int:
    """Return -1, 0 or 1 as a is lower than, equal to, or higher than b."""
    ka, kb = _pair_keys(a, b, ecosystem)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != "" and value.strip() != "*"


def version_in_range(
    version: str,
    introduced: str | None,
    fixed: str | None,
    last_affected: str | None,
    ecosystem: str | None = None,
) -> bool:
    """
    True iff introduced <= version, and version < fixed when fixed is set,
    and version <= last_affected when last_affected is set.
    """
    if introduced is not None and introduced.strip() not in _UNBOUNDED_INTRODUCED:
        if compare_versions(version, introduced, ecosystem) < 0:
            return False
    if _present(fixed) and compare_versions(version, fixed, ecosystem) >= 0:
        return False
    if _present(last_affected) and compare_versions(version, last_affected, ecosystem) > 0:
        return False
    return True


def version_in_cpe_bounds(
    version: str,
    version_exact: str | None,
    start_incl: str | None,
    start_excl: str | None,
    end_incl: str | None,
    end_excl: str | None,
    ecosystem: str | None = None,
) -> bool:
    """
    Evaluate one flattened CPE entry against a version.

    An exact version matches only on literal equality. Bounds use the same
    inclusive/exclusive semantics as advisory ranges. An entry without any
    version information matches every version of its (restricted) target.
    """
    if _present(version_exact):
        return version.strip() == version_exact.strip()
    if _present(start_incl) and compare_versions(version, start_incl, ecosystem) < 0:
        return False
    if _present(start_excl) and compare_versions(version, start_excl, ecosystem) <= 0:
        return False
    if _present(end_incl) and compare_versions(version, end_incl, ecosystem) > 0:
        return False
    if _present(end_excl) and compare_versions(version, end_excl, ecosystem) >= 0:
        return False
    return True
