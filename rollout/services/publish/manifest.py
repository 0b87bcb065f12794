"""package.json access.

The manifest is read before the version bump (current version, scripts) and
re-read after it by the cycle roller. Writes keep the file's indentation.
"""

from __future__ import annotations

import json
import re
from dataclasses import replace
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.core.structured import as_str_dict, get_str, get_table
from rollout.services.publish.errors import PublishError
from rollout.services.publish.model import Manifest

MANIFEST_FILENAME = "package.json"
LOCKFILE_FILENAME = "package-lock.json"
PREPUBLISH_SCRIPT = "prepublishOnly"

_INDENT_RE = re.compile(r"^\{\s*\n([ \t]+)\"", re.MULTILINE)


def manifest_path(root: Path) -> Path:
    return root / MANIFEST_FILENAME


def parse_manifest(text: str, *, path: Path) -> Result[Manifest, PublishError]:
    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(
            PublishError(
                kind="manifest_invalid",
                message=f"{path.name} is not valid JSON",
                hint=str(e),
            )
        )

    data = as_str_dict(obj)
    if data is None:
        return Err(
            PublishError(kind="manifest_invalid", message=f"{path.name} must be a JSON object")
        )

    name = get_str(data, "name") or ""
    version = get_str(data, "version")
    if version is None:
        return Err(
            PublishError(
                kind="manifest_invalid",
                message=f"{path.name} has no version field",
            )
        )

    scripts: dict[str, str] = {}
    for key, value in (get_table(data, "scripts") or {}).items():
        if isinstance(value, str):
            scripts[key] = value

    return Ok(Manifest(path=path, name=name, version=version, scripts=scripts, raw=data))


def load_manifest(root: Path) -> Result[Manifest, PublishError]:
    path = manifest_path(root)
    if not path.is_file():
        return Err(
            PublishError(
                kind="manifest_missing",
                message=f"{MANIFEST_FILENAME} not found in {root}",
                hint="Run publish from the package root",
            )
        )
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return Err(
            PublishError(kind="manifest_invalid", message=f"cannot read {path}", hint=str(e))
        )
    return parse_manifest(text, path=path)


def _detect_indent(text: str) -> str:
    m = _INDENT_RE.search(text)
    return m.group(1) if m else "  "


def _rewrite_version(path: Path, version: str) -> Result[None, PublishError]:
    try:
        text = path.read_text(encoding="utf-8")
        obj: object = json.loads(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return Err(PublishError(kind="io_failed", message=f"cannot read {path.name}", hint=str(e)))

    data = as_str_dict(obj)
    if data is None:
        return Err(PublishError(kind="manifest_invalid", message=f"{path.name} must be a JSON object"))

    data["version"] = version
    # package-lock.json v2+ repeats the root version under packages[""].
    packages = get_table(data, "packages")
    if packages is not None:
        root_pkg = get_table(packages, "")
        if root_pkg is not None and "version" in root_pkg:
            root_pkg["version"] = version

    rendered = json.dumps(data, indent=_detect_indent(text), ensure_ascii=False) + "\n"
    try:
        path.write_text(rendered, encoding="utf-8")
    except OSError as e:
        return Err(PublishError(kind="io_failed", message=f"cannot write {path.name}", hint=str(e)))
    return Ok(None)


def write_manifest_version(manifest: Manifest, version: str) -> Result[Manifest, PublishError]:
    """Set ``version`` in package.json (and package-lock.json when present)."""
    written = _rewrite_version(manifest.path, version)
    if isinstance(written, Err):
        return written

    lockfile = manifest.path.parent / LOCKFILE_FILENAME
    if lockfile.is_file():
        locked = _rewrite_version(lockfile, version)
        if isinstance(locked, Err):
            return locked

    raw = dict(manifest.raw)
    raw["version"] = version
    return Ok(replace(manifest, version=version, raw=raw))


def without_version(data: dict[str, object]) -> dict[str, object]:
    return {k: v for k, v in data.items() if k != "version"}
