from __future__ import annotations

import json
from pathlib import Path

from rollout.core.result import Err, Ok
from rollout.services.publish.manifest import (
    load_manifest,
    without_version,
    write_manifest_version,
)


def _write_package(root: Path, data: dict[str, object], *, indent: int = 2) -> Path:
    path = root / "package.json"
    path.write_text(json.dumps(data, indent=indent) + "\n", encoding="utf-8")
    return path


def test_load_manifest_reads_version_and_scripts(tmp_path: Path) -> None:
    _write_package(
        tmp_path,
        {"name": "widget", "version": "0.0.4", "scripts": {"prepublishOnly": "npm test", "x": 1}},
    )

    result = load_manifest(tmp_path)

    assert isinstance(result, Ok)
    assert result.value.name == "widget"
    assert result.value.version == "0.0.4"
    assert result.value.scripts == {"prepublishOnly": "npm test"}
    assert result.value.has_script("prepublishOnly")


def test_load_manifest_missing(tmp_path: Path) -> None:
    result = load_manifest(tmp_path)
    assert isinstance(result, Err)
    assert result.error.kind == "manifest_missing"


def test_load_manifest_invalid_json(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text("{ nope", encoding="utf-8")

    result = load_manifest(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "manifest_invalid"


def test_load_manifest_without_version(tmp_path: Path) -> None:
    _write_package(tmp_path, {"name": "widget"})

    result = load_manifest(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "manifest_invalid"
    assert "no version" in result.error.message


def test_write_version_updates_lockfile_and_keeps_indent(tmp_path: Path) -> None:
    _write_package(tmp_path, {"name": "widget", "version": "0.0.4"}, indent=4)
    (tmp_path / "package-lock.json").write_text(
        json.dumps(
            {
                "name": "widget",
                "version": "0.0.4",
                "lockfileVersion": 3,
                "packages": {"": {"name": "widget", "version": "0.0.4"}},
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    manifest = load_manifest(tmp_path)
    assert isinstance(manifest, Ok)

    written = write_manifest_version(manifest.value, "0.1.0")

    assert isinstance(written, Ok)
    assert written.value.version == "0.1.0"
    text = (tmp_path / "package.json").read_text(encoding="utf-8")
    assert '\n    "version": "0.1.0"' in text
    lock = json.loads((tmp_path / "package-lock.json").read_text(encoding="utf-8"))
    assert lock["version"] == "0.1.0"
    assert lock["packages"][""]["version"] == "0.1.0"


def test_without_version() -> None:
    assert without_version({"name": "a", "version": "1.0.0"}) == {"name": "a"}
