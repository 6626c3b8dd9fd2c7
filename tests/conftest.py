"""Pytest configuration and fixtures for patch_syncer tests."""

import tempfile
from pathlib import Path

import pytest
from git import Repo

from patch_syncer.config import SyncConfig

# Contents of the mirrored crate, identical on both sides at the start
MIRROR_FILES = {
    "README.md": "# WebRender\n",
    "webrender/src/lib.rs": "pub fn render() {}\n",
    "webrender_api/src/lib.rs": "pub struct Api;\n",
}


def init_repo(path: Path) -> Repo:
    """Create a repository on master with a committer identity."""
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path, initial_branch="master")
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    return repo


def commit_files(repo_path: Path, files: dict[str, str | None], message: str) -> str:
    """Write (or delete, for None) files relative to repo_path and commit them."""
    repo = Repo(repo_path)
    for name, content in files.items():
        path = repo_path / name
        if content is None:
            path.unlink()
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    repo.git.add("-A")
    repo.git.commit("-m", message)
    return repo.head.commit.hexsha


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def upstream_repo(temp_dir: Path):
    """The open-source repository as it lives on the forge."""
    repo_path = temp_dir / "upstream"
    init_repo(repo_path)
    commit_files(repo_path, dict(MIRROR_FILES), "Initial import")
    yield repo_path


@pytest.fixture
def target_repo(temp_dir: Path, upstream_repo: Path):
    """Local clone of the open-source repository, upstream as origin."""
    repo_path = temp_dir / "target"
    repo = Repo.clone_from(str(upstream_repo), repo_path)
    repo.config_writer().set_value("user", "name", "Sync Bot").release()
    repo.config_writer().set_value("user", "email", "bot@example.com").release()
    yield repo_path


@pytest.fixture
def source_repo(temp_dir: Path):
    """Monorepo with the crate mirrored under gfx/wr and the marker at its tip."""
    repo_path = temp_dir / "source"
    repo = init_repo(repo_path)
    files = {f"gfx/wr/{name}": content for name, content in MIRROR_FILES.items()}
    files["dom/base/Document.cpp"] = "// document\n"
    commit_files(repo_path, files, "Bug 1 - Initial monorepo")
    repo.git.branch("wrupdater-synced")
    yield repo_path


@pytest.fixture
def sync_config(temp_dir: Path, source_repo: Path, target_repo: Path) -> SyncConfig:
    """Configuration wiring the fixture repositories together."""
    return SyncConfig(
        source_repo_path=source_repo,
        target_repo_path=target_repo,
        work_dir=temp_dir / "work",
        revision_lookup="git",
        revision_url_template="https://hg.example.org/rev/{rev}",
    )
