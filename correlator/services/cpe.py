"""CPE 2.3 parsing and the mapping from package ecosystems to CPE target software."""

import re
from dataclasses import dataclass

from packaging.utils import canonicalize_name

# Split on ':' not preceded by a backslash escape.
_UNESCAPED_COLON = re.compile(r"(?<!\\):")
# Go module major-version suffix, e.g. 'github.com/org/repo/v2'.
_GO_MAJOR_SUFFIX = re.compile(r"/v\d+$")

# Ecosystem (lowercased) -> canonical CPE target_sw values. Ecosystems absent here
# never produce CPE candidates.
ECOSYSTEM_TARGET_SOFTWARE: dict[str, tuple[str, ...]] = {
    "npm": ("node.js", "nodejs"),
    "pypi": ("python",),
    "maven": ("java",),
    "go": ("go", "golang"),
    "nuget": (".net", "asp.net", ".net_framework"),
    "crates.io": ("rust",),
    "packagist": ("php",),
    "rubygems": ("ruby", "rails", "ruby_on_rails"),
}

# Canonical OSV spelling of each ecosystem, keyed by lowercase name.
CANONICAL_ECOSYSTEMS: dict[str, str] = {
    "npm": "npm",
    "pypi": "PyPI",
    "maven": "Maven",
    "go": "Go",
    "golang": "Go",
    "nuget": "NuGet",
    "crates.io": "crates.io",
    "cargo": "crates.io",
    "packagist": "Packagist",
    "composer": "Packagist",
    "rubygems": "RubyGems",
    "gem": "RubyGems",
}


@dataclass(frozen=True)
class CpeParts:
    """The fields of a cpe:2.3 formatted string used for matching."""

    part: str
    vendor: str
    product: str
    version: str
    target_sw: str


def _unescape(value: str) -> str:
    return value.replace("\\", "").lower()


def parse_cpe23(criteria: str) -> CpeParts | None:
    """
    Parse 'cpe:2.3:part:vendor:product:version:update:edition:language:sw_edition:target_sw:...'.
    Returns None for strings that are not CPE 2.3 formatted.
    """
    if not criteria or not criteria.startswith("cpe:2.3:"):
        return None
    fields = _UNESCAPED_COLON.split(criteria)
    if len(fields) < 11:
        return None
    return CpeParts(
        part=fields[2],
        vendor=_unescape(fields[3]),
        product=_unescape(fields[4]),
        version=fields[5].replace("\\", ""),
        target_sw=_unescape(fields[10]),
    )


def canonical_ecosystem(ecosystem: str) -> str:
    """Return the OSV spelling of an ecosystem name, or the stripped input if unknown."""
    value = (ecosystem or "").strip()
    return CANONICAL_ECOSYSTEMS.get(value.lower(), value)


def normalize_package_name(name: str, ecosystem: str) -> str:
    """Lookup form of a package name: PEP 503 for PyPI, the trimmed name elsewhere."""
    name = (name or "").strip()
    if (ecosystem or "").strip().lower() == "pypi":
        return canonicalize_name(name)
    return name


def target_software_for(ecosystem: str) -> tuple[str, ...]:
    """CPE target_sw values that describe packages of this ecosystem; empty if none."""
    return ECOSYSTEM_TARGET_SOFTWARE.get((ecosystem or "").strip().lower(), ())


def cpe_product_name(package_name: str, ecosystem: str) -> str:
    """
    Derive the CPE product token for a package name.

    '@scope/pkg' -> 'pkg', 'group:artifact' -> 'artifact', 'github.com/org/repo' -> 'repo';
    the result is lowercased with spaces replaced by underscores.
    """
    name = (package_name or "").strip().lower()
    eco = (ecosystem or "").strip().lower()
    if eco == "maven" and ":" in name:
        name = name.rsplit(":", 1)[1]
    if eco == "go":
        name = _GO_MAJOR_SUFFIX.sub("", name)
    if "/" in name:
        name = name.rstrip("/").rsplit("/", 1)[1]
    return name.replace(" ", "_")
