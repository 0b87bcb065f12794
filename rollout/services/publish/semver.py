from __future__ import annotations

import re
from dataclasses import dataclass

from rollout.core.result import Err, Ok, Result
from rollout.services.publish.errors import PublishError
from rollout.services.publish.model import VersionBump

_VERSION_RE = re.compile(r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)(?:-([0-9A-Za-z.-]+))?$")
_EXPLICIT_RE = re.compile(r"^v?\d+\.\d+\.\d+$")
_RELEASE_BRANCH_RE = re.compile(r"^release/v?(\d+\.\d+\.\d+)$")

RELEASE_BRANCH_PREFIX = "release/"
_BUMPS: tuple[VersionBump, ...] = ("patch", "minor", "major")

# git check-ref-format: forbidden sequences and characters.
_REF_FORBIDDEN = ("..", "@{", "//")
_REF_FORBIDDEN_CHARS = frozenset(" ~^:?*[\\\x7f")


@dataclass(frozen=True, slots=True, order=True)
class Version:
    major: int
    minor: int
    patch: int
    prerelease: str | None = None

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base

    def bump(self, kind: VersionBump) -> Version:
        match kind:
            case "major":
                return Version(self.major + 1, 0, 0)
            case "minor":
                return Version(self.major, self.minor + 1, 0)
            case "patch":
                # A pre-release graduates to its base version.
                if self.prerelease:
                    return Version(self.major, self.minor, self.patch)
                return Version(self.major, self.minor, self.patch + 1)
            case _:
                raise AssertionError(f"unexpected bump kind: {kind}")


def parse_version(text: str) -> Version | None:
    m = _VERSION_RE.match(text.strip())
    if m is None:
        return None
    return Version(int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4))


def is_explicit_version(text: str) -> bool:
    """True for a plain ``x.y.z`` (optionally ``v``-prefixed)."""
    return _EXPLICIT_RE.match(text.strip()) is not None


def strip_v(text: str) -> str:
    text = text.strip()
    return text[1:] if text.startswith("v") else text


def tag_name(version: str) -> str:
    return f"v{strip_v(version)}"


def release_branch_name(version: str) -> str:
    return f"{RELEASE_BRANCH_PREFIX}{strip_v(version)}"


def version_from_branch(branch: str) -> str | None:
    """``release/1.2.3`` -> ``1.2.3``; any other branch -> None."""
    m = _RELEASE_BRANCH_RE.match(branch)
    return m.group(1) if m else None


def next_patch(version: str) -> Result[str, PublishError]:
    return bump_version(version, "patch")


def bump_version(version: str, kind: VersionBump) -> Result[str, PublishError]:
    parsed = parse_version(version)
    if parsed is None:
        return Err(
            PublishError(
                kind="invalid_version",
                message=f"Invalid version string: {version}",
                hint="Expected x.y.z (optionally with a -prerelease suffix)",
            )
        )
    return Ok(str(parsed.bump(kind)))


def calculate_target_version(current: str, target: str) -> Result[str, PublishError]:
    """Apply ``patch``/``minor``/``major`` or validate an explicit ``x.y.z``."""
    lowered = target.strip().lower()
    if lowered in _BUMPS:
        return bump_version(current, lowered)  # type: ignore[arg-type]
    if not is_explicit_version(target):
        return Err(
            PublishError(
                kind="invalid_version",
                message=f"Invalid version format: {target}",
                hint='Expected "x.y.z" or one of: "patch", "minor", "major"',
            )
        )
    return Ok(strip_v(target))


def is_valid_ref_name(name: str) -> bool:
    """Subset of ``git check-ref-format`` rules for a single tag/branch name."""
    if not name or name == "@":
        return False
    if name.startswith(("-", "/", ".")) or name.endswith(("/", ".", ".lock")):
        return False
    if any(seq in name for seq in _REF_FORBIDDEN):
        return False
    if any(ch in _REF_FORBIDDEN_CHARS or ord(ch) < 0x20 for ch in name):
        return False
    return not any(part.startswith(".") or part.endswith(".lock") for part in name.split("/"))
