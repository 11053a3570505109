"""Version normalization and version-range constraints.

Versions are normalized to the four-part form Composer clients use
(``1.2`` becomes ``1.2.0.0``, ``1.0-beta2`` becomes ``1.0.0.0-beta2``) and
compared with the same ordering rules as PHP's ``version_compare()``, so that
ranges such as ``>=1.2 <2.0``, ``~1.4`` or ``^2.0 || ^3.0`` decide the same
way a Composer client would.
"""

import re
from dataclasses import dataclass
from functools import cmp_to_key

from wprecords.packages.exceptions import InvalidConstraint, InvalidVersion

_STABILITIES = "stable|beta|b|RC|alpha|a|patch|pl|p"
MODIFIER_REGEX = rf"[._-]?(?:({_STABILITIES})((?:[.-]?\d+)*)?)?([.-]?dev)?"

_CLASSICAL_RE = re.compile(
    r"^v?(\d{1,5})(\.\d+)?(\.\d+)?(\.\d+)?" + MODIFIER_REGEX + "$", re.IGNORECASE
)
_DATE_RE = re.compile(
    r"^v?(\d{4}(?:[.:-]?\d{2}){1,6}(?:[.:-]?\d{1,3}){0,2})" + MODIFIER_REGEX + "$",
    re.IGNORECASE,
)
_BRANCH_RE = re.compile(r"^v?(\d+)(\.(?:\d+|[xX*]))?(\.(?:\d+|[xX*]))?(\.(?:\d+|[xX*]))?$")
_VERSION_RE = r"v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.(\d+))?" + MODIFIER_REGEX + r"(?:\+[^\s]+)?"

_SPECIAL_FORMS = (
    ("dev", 0),
    ("alpha", 1),
    ("a", 1),
    ("beta", 2),
    ("b", 2),
    ("RC", 3),
    ("rc", 3),
    ("#", 4),
    ("pl", 5),
    ("p", 5),
)


def _expand_stability(stability: str) -> str:
    stability = stability.lower()
    return {"a": "alpha", "b": "beta", "p": "patch", "pl": "patch", "rc": "RC"}.get(
        stability, stability
    )


def _canonicalize(version: str) -> list[str]:
    """Split a version the way PHP's version_compare() does."""
    out: list[str] = []
    previous = ""
    for char in version:
        if char in "-_+":
            if previous != ".":
                out.append(".")
            previous = "."
            continue
        if previous and previous != "." and (char.isdigit() != previous.isdigit()):
            out.append(".")
        out.append(char)
        previous = char
    return [part for part in "".join(out).split(".") if part]


def _special_order(form: str) -> int:
    for name, order in _SPECIAL_FORMS:
        if form.startswith(name):
            return order
    return -6


def _compare_special(form1: str, form2: str) -> int:
    found1, found2 = _special_order(form1), _special_order(form2)
    return (found1 > found2) - (found1 < found2)


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings.

    Follows PHP's version_compare(): dotted parts are compared numerically,
    and ``dev < alpha < beta < RC < (release) < patch`` for textual parts.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Examples:
        >>> compare_versions("1.0.0.0", "1.0.0.0-dev")
        1
        >>> compare_versions("1.10", "1.9")
        1
    """
    parts1, parts2 = _canonicalize(v1), _canonicalize(v2)
    compare = 0
    index = 0
    while index < len(parts1) and index < len(parts2):
        p1, p2 = parts1[index], parts2[index]
        if p1.isdigit() and p2.isdigit():
            n1, n2 = int(p1), int(p2)
            compare = (n1 > n2) - (n1 < n2)
        elif not p1.isdigit() and not p2.isdigit():
            compare = _compare_special(p1, p2)
        elif p1.isdigit():
            compare = _compare_special("#N#", p2)
        else:
            compare = _compare_special(p1, "#N#")
        if compare != 0:
            return compare
        index += 1

    if index < len(parts1):
        rest = parts1[index]
        return 1 if rest.isdigit() else _compare_special(rest, "#N#")
    if index < len(parts2):
        rest = parts2[index]
        return -1 if rest.isdigit() else _compare_special("#N#", rest)
    return 0


def _version_compare_op(a: str, b: str, operator: str, compare_branches: bool = False) -> bool:
    a_is_branch = a.startswith("dev-")
    b_is_branch = b.startswith("dev-")
    if operator == "!=" and (a_is_branch or b_is_branch):
        return a != b
    if a_is_branch and b_is_branch:
        return operator == "==" and a == b
    if not compare_branches and (a_is_branch or b_is_branch):
        return False

    result = compare_versions(a, b)
    return {
        "==": result == 0,
        "!=": result != 0,
        "<": result < 0,
        "<=": result <= 0,
        ">": result > 0,
        ">=": result >= 0,
    }[operator]


class Constraint:
    """A version-range predicate."""

    def matches(self, other: "Constraint | str") -> bool:
        raise NotImplementedError

    def _as_constraint(self, other: "Constraint | str") -> "Constraint":
        if isinstance(other, Constraint):
            return other
        return SingleConstraint("==", normalize_version(other))


class MatchAllConstraint(Constraint):
    """Matches every version (``*``)."""

    def matches(self, other: "Constraint | str") -> bool:
        return True

    def __str__(self) -> str:
        return "*"

    def __repr__(self) -> str:
        return "MatchAllConstraint()"


class SingleConstraint(Constraint):
    """A single comparator constraint such as ``>= 1.2.0.0-dev``."""

    OPERATORS = ("==", "!=", "<", "<=", ">", ">=")

    def __init__(self, operator: str, version: str):
        operator = {"=": "==", "<>": "!="}.get(operator, operator)
        if operator not in self.OPERATORS:
            raise InvalidConstraint.from_range(f"{operator}{version}", "unknown operator")
        self.operator = operator
        self.version = version

    def matches(self, other: "Constraint | str") -> bool:
        provider = self._as_constraint(other)
        if isinstance(provider, SingleConstraint):
            return self._match_specific(provider)
        return provider.matches(self)

    def _match_specific(self, provider: "SingleConstraint") -> bool:
        no_equal_op = self.operator.replace("=", "")
        provider_no_equal_op = provider.operator.replace("=", "")

        is_equal_op = self.operator == "=="
        is_non_equal_op = self.operator == "!="
        is_provider_equal_op = provider.operator == "=="
        is_provider_non_equal_op = provider.operator == "!="

        # '!=' always has a solution unless the other side is an exact version
        if is_non_equal_op or is_provider_non_equal_op:
            if (
                is_non_equal_op
                and not is_provider_non_equal_op
                and not is_provider_equal_op
                and provider.version.startswith("dev-")
            ):
                return False
            if (
                is_provider_non_equal_op
                and not is_non_equal_op
                and not is_equal_op
                and self.version.startswith("dev-")
            ):
                return False
            if not is_equal_op and not is_provider_equal_op:
                return True
            return _version_compare_op(provider.version, self.version, "!=", True)

        # Same direction (e.g. <= 2.0 and < 1.0) always overlaps
        if self.operator != "==" and no_equal_op == provider_no_equal_op:
            return not (self.version.startswith("dev-") or provider.version.startswith("dev-"))

        version1 = self.version if is_equal_op else provider.version
        version2 = provider.version if is_equal_op else self.version
        operator = provider.operator if is_equal_op else self.operator

        if _version_compare_op(version1, version2, operator, True):
            # >= 1.0 against < 1.0 shares the boundary but not the interval
            return not (
                provider.operator in ("<", ">")
                and self.operator not in ("<", ">")
                and compare_versions(provider.version, self.version) == 0
            )
        return False

    def __str__(self) -> str:
        return f"{self.operator} {self.version}"

    def __repr__(self) -> str:
        return f"SingleConstraint({self.operator!r}, {self.version!r})"


class MultiConstraint(Constraint):
    """A conjunctive (AND) or disjunctive (OR) group of constraints."""

    def __init__(self, constraints: list[Constraint], conjunctive: bool = True):
        self.constraints = constraints
        self.conjunctive = conjunctive

    def matches(self, other: "Constraint | str") -> bool:
        provider = self._as_constraint(other)
        if self.conjunctive:
            return all(constraint.matches(provider) for constraint in self.constraints)
        return any(constraint.matches(provider) for constraint in self.constraints)

    def __str__(self) -> str:
        glue = " " if self.conjunctive else " || "
        return "[" + glue.join(str(c) for c in self.constraints) + "]"

    def __repr__(self) -> str:
        return f"MultiConstraint({self.constraints!r}, conjunctive={self.conjunctive})"


@dataclass(frozen=True)
class VersionCheck:
    """Outcome of validating a version string.

    Callers branch on ``ok`` instead of catching InvalidVersion, which keeps
    "skip this field" handling explicit at every call site.
    """

    version: str
    normalized: str | None = None
    error: InvalidVersion | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.normalized)


class VersionService:
    """Normalizes versions and parses version-range constraints."""

    def normalize(self, version: str, full_version: str | None = None) -> str:
        """Normalize a free-form version string.

        Args:
            version: Version to normalize (e.g. "v1.2", "2.0-beta1", "1.x-dev")
            full_version: Original version string, used in error messages

        Returns:
            Normalized version (e.g. "1.2.0.0", "2.0.0.0-beta1", "1.9999999.9999999.9999999-dev")

        Raises:
            InvalidVersion: If the version cannot be parsed
        """
        version = str(version).strip()
        if full_version is None:
            full_version = version
        if not version:
            raise InvalidVersion.from_version(full_version, "empty string")

        alias = re.match(r"^([^,\s]+) +as +([^,\s]+)$", version)
        if alias:
            version = alias.group(1)

        flag = re.match(r"^([^,\s@]+)@(?:stable|RC|beta|alpha|dev)$", version, re.IGNORECASE)
        if flag:
            version = flag.group(1)

        if version.lower() in ("master", "trunk", "default"):
            return "dev-" + version
        if version.lower().startswith("dev-"):
            return "dev-" + version[4:]

        build = re.match(r"^([^,\s+]+)\+[^\s]+$", version)
        if build:
            version = build.group(1)

        index = None
        match = _CLASSICAL_RE.match(version)
        if match:
            version = (
                match.group(1)
                + (match.group(2) or ".0")
                + (match.group(3) or ".0")
                + (match.group(4) or ".0")
            )
            index = 5
        else:
            match = _DATE_RE.match(version)
            if match:
                version = re.sub(r"\D", ".", match.group(1))
                index = 2

        if match and index is not None:
            stability, number, dev = match.group(index, index + 1, index + 2)
            if stability:
                if stability.lower() == "stable":
                    return version
                version += "-" + _expand_stability(stability) + (number.lstrip(".-") if number else "")
            if dev:
                version += "-dev"
            return version

        branch = re.match(r"^(.*?)[.-]?dev$", version, re.IGNORECASE)
        if branch:
            normalized = self.normalize_branch(branch.group(1))
            if not normalized.startswith("dev-"):
                return normalized

        raise InvalidVersion.from_version(full_version)

    def normalize_branch(self, name: str) -> str:
        """Normalize a branch name (``1.x`` becomes ``1.9999999.9999999.9999999-dev``)."""
        name = name.strip()
        match = _BRANCH_RE.match(name)
        if match:
            version = ""
            for i in range(1, 5):
                part = match.group(i)
                version += part.replace("*", "x").replace("X", "x") if part else ".x"
            return version.replace("x", "9999999") + "-dev"
        return "dev-" + name

    def check(self, version: str) -> VersionCheck:
        """Validate a version without raising."""
        if version is None or not str(version).strip():
            return VersionCheck(version or "", error=InvalidVersion.from_version("", "empty string"))
        try:
            return VersionCheck(version, normalized=self.normalize(version))
        except InvalidVersion as e:
            return VersionCheck(version, error=e)

    def is_valid(self, version: str) -> bool:
        return self.check(version).ok

    def parse_stability(self, version: str) -> str:
        """Return the stability of a version: dev, alpha, beta, RC or stable."""
        version = re.sub(r"#.+$", "", version)
        if version.startswith("dev-") or version.endswith("-dev"):
            return "dev"

        match = re.search(MODIFIER_REGEX + r"(?:\+.*)?$", version.lower(), re.IGNORECASE)
        if match:
            if match.group(3):
                return "dev"
            stability = (match.group(1) or "").lower()
            if stability in ("beta", "b"):
                return "beta"
            if stability in ("alpha", "a"):
                return "alpha"
            if stability == "rc":
                return "RC"
        return "stable"

    def compare(self, v1: str, v2: str) -> int:
        """Compare two versions, normalizing them first when possible."""
        c1, c2 = self.check(v1), self.check(v2)
        return compare_versions(c1.normalized if c1.ok else v1, c2.normalized if c2.ok else v2)

    def sort_desc(self, versions) -> list[str]:
        """Sort versions from newest to oldest."""
        return sorted(versions, key=cmp_to_key(lambda a, b: self.compare(b, a)))

    def parse_constraint(self, constraints: str) -> Constraint:
        """Parse a version range such as ``>=1.2 <2.0 || ^3.0``.

        Raises:
            InvalidConstraint: If the range is malformed
        """
        pretty = constraints
        stripped = str(constraints).strip()
        if not stripped:
            raise InvalidConstraint.from_range(pretty, "empty constraint")

        flag = re.match(r"^([^,\s]*?)@(stable|RC|beta|alpha|dev)$", stripped, re.IGNORECASE)
        if flag:
            stripped = flag.group(1) or "*"

        ref = re.match(r"^(dev-[^,\s@]+?|[^,\s@]+?\.x-dev)#.+$", stripped, re.IGNORECASE)
        if ref:
            stripped = ref.group(1)

        or_constraints: list[Constraint] = []
        for group in re.split(r"\s*\|\|?\s*", stripped):
            if not group:
                raise InvalidConstraint.from_range(pretty, "empty OR group")
            and_constraints: list[Constraint] = []
            for part in self._split_and(group):
                and_constraints.extend(self._parse_single(part, pretty))

            if len(and_constraints) == 1:
                or_constraints.append(and_constraints[0])
            else:
                or_constraints.append(MultiConstraint(and_constraints, conjunctive=True))

        if len(or_constraints) == 1:
            return or_constraints[0]
        if any(isinstance(c, MatchAllConstraint) for c in or_constraints):
            return MatchAllConstraint()
        return MultiConstraint(or_constraints, conjunctive=False)

    def _split_and(self, group: str) -> list[str]:
        hyphen = re.match(r"^(\S+)\s+-\s+(\S+)$", group)
        if hyphen:
            return [f"{hyphen.group(1)} - {hyphen.group(2)}"]
        group = re.sub(r"(\S+)\s+as\s+\S+", r"\1", group)
        group = re.sub(r"(<>|!=|>=?|<=?|==?|\^|~>?)\s+", r"\1", group)
        return [part for part in re.split(r"\s*,\s*|\s+", group) if part]

    def _parse_single(self, constraint: str, pretty: str) -> list[Constraint]:
        flag = re.match(r"^([^,\s@]+)@(?:stable|RC|beta|alpha|dev)$", constraint, re.IGNORECASE)
        if flag:
            constraint = flag.group(1)

        if re.match(r"^v?[xX*](\.[xX*])*$", constraint):
            return [MatchAllConstraint()]

        hyphen = re.match(r"^(\S+) - (\S+)$", constraint)
        if hyphen:
            return self._parse_hyphen_range(hyphen.group(1), hyphen.group(2), pretty)

        if constraint.startswith("~>"):
            raise InvalidConstraint.from_range(pretty, "'~>' is not a valid operator, use '~'")

        tilde = re.match(r"^~" + _VERSION_RE + "$", constraint, re.IGNORECASE)
        if tilde:
            groups = tilde.groups()
            position = self._significant_position(groups)
            suffix = "" if (groups[4] or groups[6]) else "-dev"
            lower = SingleConstraint(">=", self._normalize_for(constraint[1:] + suffix, pretty))
            upper_version = self._manipulate(groups, max(1, position - 1), 1)
            return [lower, SingleConstraint("<", upper_version + "-dev")]

        caret = re.match(r"^\^" + _VERSION_RE + "$", constraint, re.IGNORECASE)
        if caret:
            groups = caret.groups()
            if groups[0] != "0" or not groups[1]:
                position = 1
            elif groups[1] != "0" or not groups[2]:
                position = 2
            else:
                position = 3
            suffix = "" if (groups[4] or groups[6]) else "-dev"
            lower = SingleConstraint(">=", self._normalize_for(constraint[1:] + suffix, pretty))
            upper_version = self._manipulate(groups, position, 1)
            return [lower, SingleConstraint("<", upper_version + "-dev")]

        wildcard = re.match(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.[xX*])+$", constraint)
        if wildcard:
            groups = wildcard.groups() + (None,)
            position = self._significant_position(groups)
            low = self._manipulate(groups, position) + "-dev"
            high = self._manipulate(groups, position, 1) + "-dev"
            if low == "0.0.0.0-dev":
                return [SingleConstraint("<", high)]
            return [SingleConstraint(">=", low), SingleConstraint("<", high)]

        basic = re.match(r"^(<>|!=|>=?|<=?|==?)?\s*(.*)$", constraint)
        if basic and basic.group(2):
            operator = basic.group(1) or "=="
            version = self._normalize_for(basic.group(2), pretty)
            if operator in ("<", ">=") and not version.startswith("dev-"):
                if self.parse_stability(version) == "stable":
                    version += "-dev"
            return [SingleConstraint(operator, version)]

        raise InvalidConstraint.from_range(pretty)

    def _parse_hyphen_range(self, low: str, high: str, pretty: str) -> list[Constraint]:
        low_match = re.match("^" + _VERSION_RE + "$", low, re.IGNORECASE)
        high_match = re.match("^" + _VERSION_RE + "$", high, re.IGNORECASE)
        if not low_match or not high_match:
            raise InvalidConstraint.from_range(pretty, "invalid hyphen range")

        low_suffix = "" if low_match.group(5) else "-dev"
        lower = SingleConstraint(">=", self._normalize_for(low + low_suffix, pretty))

        groups = high_match.groups()
        if (groups[2] and groups[3]) or groups[4] or groups[6]:
            return [lower, SingleConstraint("<=", self._normalize_for(high, pretty))]

        position = self._significant_position(groups)
        upper = self._manipulate(groups, position, 1) + "-dev"
        return [lower, SingleConstraint("<", upper)]

    def _normalize_for(self, version: str, pretty: str) -> str:
        try:
            return self.normalize(version)
        except InvalidVersion as e:
            raise InvalidConstraint.from_range(pretty, str(e)) from e

    @staticmethod
    def _significant_position(groups: tuple) -> int:
        if groups[3]:
            return 4
        if groups[2]:
            return 3
        if groups[1]:
            return 2
        return 1

    @staticmethod
    def _manipulate(groups: tuple, position: int, increment: int = 0, pad: str = "0") -> str:
        parts = [groups[i] or pad for i in range(4)]
        for i in range(4, 0, -1):
            if i > position:
                parts[i - 1] = pad
            elif i == position and increment:
                parts[i - 1] = str(int(parts[i - 1]) + increment)
        return ".".join(parts)


_default_service = VersionService()


def normalize_version(version: str) -> str:
    """Normalize a version with the default VersionService."""
    return _default_service.normalize(version)


def parse_constraint(constraints: str) -> Constraint:
    """Parse a version range with the default VersionService."""
    return _default_service.parse_constraint(constraints)
