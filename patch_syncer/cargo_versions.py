"""
Keep the bindings crate's Cargo.toml in step with the mirrored crates.

After new webrender code lands in the monorepo the bindings manifest must
ask for the new webrender/webrender_api versions and for the same versions
of the third-party crates webrender itself depends on. The rewrite is
line-based so comments, ordering and formatting of the manifest survive.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# Crates whose requirement line is copied verbatim, and the upstream
# manifest it is read from
SHARED_CRATES = {
    "rayon": "webrender",
    "thread_profiler": "webrender",
    "gleam": "webrender",
    "log": "webrender",
    "dwrote": "webrender",
    "euclid": "webrender_api",
    "app_units": "webrender_api",
    "core-foundation": "webrender_api",
    "core-graphics": "webrender_api",
}

_VERSION_VALUE = re.compile(r'(\bversion\s*=\s*")([^"]*)(")')


def _key_pattern(key: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(key)}\s*=")


def first_line(manifest: str, key: str) -> str | None:
    """First top-level `key = ...` line of a manifest, as written."""
    pattern = _key_pattern(key)
    for line in manifest.splitlines():
        if pattern.match(line):
            return line
    return None


def package_version(manifest: str) -> str | None:
    """The `version = "..."` of the [package] section."""
    line = first_line(manifest, "version")
    if line is None:
        return None
    match = _VERSION_VALUE.search(line)
    return match.group(2) if match else None


def set_dependency_version(manifest: str, crate: str, version: str) -> str:
    """
    Rewrite the version requirement of crate.

    Both the inline form (`crate = "x"` or `crate = { version = "x" }`)
    and the `[dependencies.crate]` table form are handled.
    """
    pattern = _key_pattern(crate)
    table = re.compile(rf"^\[(?:[\w.-]+\.)?dependencies\.{re.escape(crate)}\]\s*$")
    version_key = _key_pattern("version")
    in_table = False
    lines = manifest.splitlines(keepends=True)
    for index, line in enumerate(lines):
        if line.startswith("["):
            in_table = bool(table.match(line.rstrip("\r\n")))
            continue
        if in_table:
            if version_key.match(line):
                lines[index] = _VERSION_VALUE.sub(rf"\g<1>{version}\g<3>", line, count=1)
            continue
        if not pattern.match(line):
            continue
        if _VERSION_VALUE.search(line):
            lines[index] = _VERSION_VALUE.sub(rf"\g<1>{version}\g<3>", line, count=1)
        else:
            # Plain `crate = "x.y"` form
            lines[index] = re.sub(r'"[^"]*"', f'"{version}"', line, count=1)
    return "".join(lines)


def replace_dependency_line(manifest: str, crate: str, new_line: str) -> str:
    pattern = _key_pattern(crate)
    lines = manifest.splitlines(keepends=True)
    for index, line in enumerate(lines):
        if pattern.match(line):
            ending = line[len(line.rstrip("\r\n")):]
            lines[index] = new_line + ending
    return "".join(lines)


def sync_bindings_manifest(bindings: str, webrender: str, webrender_api: str) -> str:
    """
    Return the bindings manifest updated from the two upstream manifests.

    `webrender_traits` is renamed to `webrender_api` first, then the
    versions of webrender and webrender_api are set from their [package]
    sections and each shared third-party requirement is copied from the
    manifest that owns it. Crates absent there are left alone.
    """
    result = bindings.replace("webrender_traits", "webrender_api")

    for crate, manifest in (("webrender", webrender), ("webrender_api", webrender_api)):
        version = package_version(manifest)
        if version:
            result = set_dependency_version(result, crate, version)

    manifests = {"webrender": webrender, "webrender_api": webrender_api}
    for crate, source in SHARED_CRATES.items():
        upstream = first_line(manifests[source], crate)
        if upstream is not None:
            result = replace_dependency_line(result, crate, upstream)

    return result


def update_bindings_manifest(mirror_root: Path, bindings_manifest: Path) -> bool:
    """
    Rewrite bindings_manifest from the manifests under mirror_root.

    Returns True if the file changed.
    """
    webrender = (mirror_root / "webrender" / "Cargo.toml").read_text()
    api_path = mirror_root / "webrender_api" / "Cargo.toml"
    webrender_api = api_path.read_text() if api_path.exists() else ""

    current = bindings_manifest.read_text()
    updated = sync_bindings_manifest(current, webrender, webrender_api)
    if updated == current:
        return False
    bindings_manifest.write_text(updated)
    logger.info("Updated %s", bindings_manifest)
    return True
