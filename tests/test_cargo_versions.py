"""Tests for the bindings manifest rewrite."""

from pathlib import Path

from patch_syncer.cargo_versions import (
    first_line,
    package_version,
    set_dependency_version,
    sync_bindings_manifest,
    update_bindings_manifest,
)

WEBRENDER = """[package]
name = "webrender"
version = "0.53.0"
build = "build.rs"

[dependencies]
rayon = "0.8"
euclid = "0.16"
gleam = "0.4.15"
log = "0.3"
thread_profiler = "0.1.1"
webrender_api = {path = "../webrender_api"}

[target.'cfg(target_os = "windows")'.dependencies]
dwrote = "0.4.1"
"""

WEBRENDER_API = """[package]
name = "webrender_api"
version = "0.53.1"

[dependencies]
app_units = "0.6"
euclid = "0.17"

[target.'cfg(target_os = "macos")'.dependencies]
core-foundation = "0.4"
gleam = "0.9"
"""

BINDINGS = """[package]
name = "webrender_bindings"
version = "0.1.0"

[dependencies]
webrender_traits = {path = "../webrender_traits", version = "0.52.0"}
rayon = "0.7"
thread_profiler = "0.1.0"
euclid = "0.15"
app_units = "0.5"
gleam = "0.4.14"
log = "0.3"
bincode = "0.8"

[dependencies.webrender]
path = "../webrender"
version = "0.52.0"
default-features = false

[target.'cfg(target_os = "windows")'.dependencies]
dwrote = "0.4"
"""


def test_first_line():
    assert first_line(WEBRENDER, "euclid") == 'euclid = "0.16"'
    assert first_line(WEBRENDER, "app_units") is None
    assert first_line(WEBRENDER, "version") == 'version = "0.53.0"'


def test_package_version():
    assert package_version(WEBRENDER) == "0.53.0"
    assert package_version("") is None


class TestSetDependencyVersion:
    """Tests for set_dependency_version."""

    def test_plain(self):
        assert set_dependency_version('log = "0.3"\n', "log", "0.4") == 'log = "0.4"\n'

    def test_inline_table(self):
        manifest = 'webrender_api = {path = "../webrender_api", version = "0.52.0"}\n'
        result = set_dependency_version(manifest, "webrender_api", "0.53.1")
        assert result == 'webrender_api = {path = "../webrender_api", version = "0.53.1"}\n'

    def test_dependency_table(self):
        result = set_dependency_version(BINDINGS, "webrender", "0.53.0")
        assert '[dependencies.webrender]\npath = "../webrender"\nversion = "0.53.0"\n' in result
        # The package's own version is untouched
        assert 'name = "webrender_bindings"\nversion = "0.1.0"' in result

    def test_similar_names_untouched(self):
        manifest = 'webrender_api = "0.52"\n'
        assert set_dependency_version(manifest, "webrender", "0.53.0") == manifest


def test_sync_bindings_manifest():
    result = sync_bindings_manifest(BINDINGS, WEBRENDER, WEBRENDER_API)

    assert "webrender_traits" not in result
    assert 'webrender_api = {path = "../webrender_api", version = "0.53.1"}' in result
    assert 'path = "../webrender"\nversion = "0.53.0"' in result
    assert 'rayon = "0.8"' in result
    assert 'thread_profiler = "0.1.1"' in result
    assert 'gleam = "0.4.15"' in result
    # Each crate comes from the manifest that owns it, even when both mention it
    assert 'euclid = "0.17"' in result
    assert 'app_units = "0.6"' in result
    assert 'dwrote = "0.4.1"' in result
    # Crates the mirrored manifests do not mention stay as they are
    assert 'bincode = "0.8"' in result


def test_update_bindings_manifest(temp_dir: Path):
    mirror = temp_dir / "gfx" / "wr"
    (mirror / "webrender").mkdir(parents=True)
    (mirror / "webrender_api").mkdir()
    (mirror / "webrender" / "Cargo.toml").write_text(WEBRENDER)
    (mirror / "webrender_api" / "Cargo.toml").write_text(WEBRENDER_API)
    bindings = temp_dir / "Cargo.toml"
    bindings.write_text(BINDINGS)

    assert update_bindings_manifest(mirror, bindings) is True
    assert 'version = "0.53.0"' in bindings.read_text()
    # A second pass has nothing left to change
    assert update_bindings_manifest(mirror, bindings) is False
