"""
Portable patches and the ordered sets of them that a run replays.

A patch is the mbox text produced by `git format-patch`. Before replay each
patch gets a provenance line, `[tag] From <url>`, inserted right before the
first `diff --git` line; `git am` then keeps that line as the last line of
the commit message, which is how the other side finds out where a change
came from.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Sequence

DIFF_START = "diff --git "


def provenance_line(tag: str, url: str) -> str:
    return f"[{tag}] From {url}"


def inject_provenance(patch_text: str, tag: str, url: str) -> str:
    """
    Insert a provenance line before the first diff of a patch.

    Only the first `diff --git` line is considered; everything before and
    after the insertion point is returned unchanged. A patch without any diff
    is returned as-is.
    """
    lines = patch_text.splitlines(keepends=True)
    for index, line in enumerate(lines):
        if line.startswith(DIFF_START):
            marker = provenance_line(tag, url) + "\n\n"
            return "".join(lines[:index]) + marker + "".join(lines[index:])
    return patch_text


def has_diff(patch_text: str) -> bool:
    """True if the patch carries at least one file diff."""
    return any(line.startswith(DIFF_START) for line in patch_text.splitlines())


def patch_subject(patch_text: str) -> str:
    """Subject header of an mbox patch, unfolded."""
    subject: list[str] = []
    for line in patch_text.splitlines():
        if subject:
            # Folded header continuation
            if line.startswith((" ", "\t")):
                subject.append(line.strip())
                continue
            break
        if line.startswith("Subject: "):
            subject.append(line[len("Subject: "):].strip())
        elif line == "":
            break
    return " ".join(subject)


def collect_pull_request_numbers(messages: Sequence[str], tag: str, pull_url_prefix: str) -> list[int]:
    """
    Find forge pull requests referenced by provenance lines in commit messages.

    Changes that were imported from a pull request carry `[tag] From
    <prefix><number>`; the numbers are returned in order of first appearance.
    """
    pattern = re.compile(
        rf"^\[{re.escape(tag)}\] From {re.escape(pull_url_prefix)}(\d+)\s*$", re.MULTILINE
    )
    numbers: list[int] = []
    for message in messages:
        for match in pattern.finditer(message):
            number = int(match.group(1))
            if number not in numbers:
                numbers.append(number)
    return numbers


def _slug(subject: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", subject).strip("-")
    return slug[:52].rstrip("-") or "patch"


@dataclass(frozen=True)
class PatchRecord:
    """One commit of the source history, exported as a patch."""

    source_commit: str
    subject: str
    author_name: str
    author_email: str
    provenance_url: str
    text: str

    @property
    def short_hash(self) -> str:
        return self.source_commit[:8]

    @property
    def is_empty(self) -> bool:
        return not has_diff(self.text)

    def filename(self, index: int) -> str:
        return f"{index:04d}-{_slug(self.subject)}.patch"


@dataclass(frozen=True)
class PatchSet:
    """Patches to replay, in source-history order (oldest first)."""

    from_marker: str | None
    to_marker: str
    records: tuple[PatchRecord, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[PatchRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> PatchRecord:
        return self.records[index]

    @property
    def source_commits(self) -> list[str]:
        return [record.source_commit for record in self.records]

    def write_to(self, directory: Path) -> list[Path]:
        """Write the patches as numbered files, returning their paths in order."""
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for index, record in enumerate(self.records, start=1):
            path = directory / record.filename(index)
            path.write_text(record.text, encoding="utf-8", errors="surrogateescape")
            paths.append(path)
        return paths
