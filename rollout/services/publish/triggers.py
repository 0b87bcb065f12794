"""Guess which workflows a release (or release tag) triggers.

The ``on:`` block is read with PyYAML. Files that do not parse fall back to
three text patterns: an ``on:`` block holding ``release:``, ``on: release``
(scalar or list), and ``push.tags`` patterns that look like version tags.
"""

from __future__ import annotations

import re

import yaml

from rollout.core.result import Err, Ok, Result
from rollout.core.structured import as_obj_list, as_str_dict
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.publish.errors import PublishError
from rollout.services.publish.gh import GitHubProtocol
from rollout.services.publish.model import WorkflowDef

_RELEASE_BLOCK_RE = re.compile(r"(?:^|\n)\s*on\s*:\s*\r?\n(?:\s+[^\S\r\n]+)*(?:\s+release\s*:)", re.M)
_ON_RELEASE_RE = re.compile(r"(?:^|\n)\s*on\s*:\s*(?:\[.*release.*\]|release)\s*(?:\n|$)", re.M)
_TAG_PUSH_RE = re.compile(
    r"(?:^|\r?\n)[^\S\r\n]*on\s*:\s*\r?\n(?:[^\S\r\n]*[^\r\n]+(?:\r?\n))*?"
    r"[^\S\r\n]*push\s*:\s*\r?\n"
    r"(?:[^\S\r\n]*tags\s*:\s*(?:\r?\n|\[)[^\]\r\n]*(?:v\*|release|tag)[^\]\r\n]*)",
    re.M | re.I,
)
_TAG_MARKERS = ("v*", "release", "tag")


def _looks_like_release_tag(pattern: str) -> bool:
    lowered = pattern.lower()
    return any(marker in lowered for marker in _TAG_MARKERS)


def _triggers_from_mapping(on: dict[str, object]) -> bool:
    if "release" in on:
        return True
    push = as_str_dict(on.get("push"))
    if push is None:
        return False
    tags = push.get("tags")
    if isinstance(tags, str):
        return _looks_like_release_tag(tags)
    items = as_obj_list(tags) or []
    return any(isinstance(t, str) and _looks_like_release_tag(t) for t in items)


def _triggers_structured(document: object) -> bool | None:
    data = as_str_dict(document)
    if data is None:
        # YAML 1.1 reads a bare ``on`` key as boolean True.
        if isinstance(document, dict) and True in document:
            data = {"on": document[True]}
        else:
            return None

    on = data.get("on")
    if on is None:
        return None

    if isinstance(on, str):
        return on == "release"
    items = as_obj_list(on)
    if items is not None:
        return "release" in items
    mapping = as_str_dict(on)
    if mapping is not None:
        return _triggers_from_mapping(mapping)
    return None


def _triggers_by_pattern(text: str) -> bool:
    return bool(
        _RELEASE_BLOCK_RE.search(text) or _ON_RELEASE_RE.search(text) or _TAG_PUSH_RE.search(text)
    )


def is_release_triggered(text: str) -> bool:
    try:
        document: object = yaml.safe_load(text)
    except yaml.YAMLError:
        return _triggers_by_pattern(text)

    structured = _triggers_structured(document)
    if structured is None:
        return _triggers_by_pattern(text)
    return structured


def detect_release_workflows(
    github: GitHubProtocol,
    *,
    workflows: list[WorkflowDef],
    ref: str,
    console: ConsoleProtocol,
) -> Result[list[WorkflowDef], PublishError]:
    """Workflows whose definition at ``ref`` triggers on release events.

    A definition that cannot be fetched fails detection as a whole; the
    caller then watches every workflow.
    """
    found: list[WorkflowDef] = []
    for workflow in workflows:
        text = github.get_file_text(workflow.path, ref=ref)
        if isinstance(text, Err):
            return Err(
                PublishError(
                    kind="workflow_failed",
                    message=f"cannot read workflow {workflow.path}",
                    hint=text.error.hint or text.error.message,
                )
            )
        if is_release_triggered(text.value):
            console.print(f"release workflow: {workflow.name} ({workflow.path})", Style.DIM)
            found.append(workflow)
    return Ok(found)
