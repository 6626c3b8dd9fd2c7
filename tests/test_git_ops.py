"""Tests for git operations module."""

from pathlib import Path

import pytest
from git import Repo
from git.exc import GitCommandError

from patch_syncer.git_ops import GitRepository

from conftest import commit_files


class TestGitRepository:
    """Tests for GitRepository wrapper."""

    def test_init_valid_repo(self, source_repo: Path):
        """Test initializing with a valid git repo."""
        git_repo = GitRepository(source_repo)
        assert git_repo.path == source_repo.resolve()

    def test_init_invalid_repo(self, temp_dir: Path):
        """Test initializing with invalid path raises error."""
        invalid_path = temp_dir / "not-a-repo"
        invalid_path.mkdir()

        with pytest.raises(ValueError, match="Not a valid git repository"):
            GitRepository(invalid_path)

    def test_init_missing_path(self, temp_dir: Path):
        with pytest.raises(ValueError, match="Not a valid git repository"):
            GitRepository(temp_dir / "missing")

    def test_get_current_branch(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        assert git_repo.get_current_branch() == "master"
        assert git_repo.get_head_ref() == "master"

    def test_get_current_commit(self, source_repo: Path):
        """Test getting current commit hash."""
        git_repo = GitRepository(source_repo)
        commit_hash = git_repo.get_current_commit()
        assert len(commit_hash) == 40  # Full SHA

    def test_get_commit(self, source_repo: Path):
        """Test getting a specific commit."""
        git_repo = GitRepository(source_repo)
        current_hash = git_repo.get_current_commit()

        commit_info = git_repo.get_commit(current_hash)
        assert commit_info.hash == current_hash
        assert commit_info.short_hash == current_hash[:8]
        assert commit_info.subject == "Bug 1 - Initial monorepo"
        assert commit_info.author_email == "test@example.com"

    def test_resolve(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        assert git_repo.resolve("wrupdater-synced") == git_repo.get_current_commit()
        assert git_repo.resolve("no-such-branch") is None
        assert git_repo.ref_exists("refs/heads/master")
        assert not git_repo.ref_exists("refs/heads/nope")

    def test_get_commits_in_range_oldest_first(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        marker = git_repo.get_current_commit()
        first = commit_files(source_repo, {"gfx/wr/a.txt": "a\n"}, "First")
        commit_files(source_repo, {"dom/b.txt": "b\n"}, "Outside")
        third = commit_files(source_repo, {"gfx/wr/c.txt": "c\n"}, "Third")

        commits = git_repo.get_commits_in_range(marker, "master", paths=["gfx/wr"])
        assert [c.hash for c in commits] == [first, third]

        everything = git_repo.get_commits_in_range(marker, "master")
        assert len(everything) == 3
        assert git_repo.count_commits(f"{marker}..master") == 3

    def test_get_commits_in_range_skips_merges(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        repo = Repo(source_repo)
        marker = git_repo.get_current_commit()

        repo.git.checkout("-b", "side")
        side = commit_files(source_repo, {"gfx/wr/side.txt": "side\n"}, "Side change")
        repo.git.checkout("master")
        main = commit_files(source_repo, {"gfx/wr/main.txt": "main\n"}, "Main change")
        repo.git.merge("--no-ff", "-m", "Merge side", "side")

        commits = git_repo.get_commits_in_range(marker, "master", paths=["gfx/wr"])
        assert sorted(c.hash for c in commits) == sorted([side, main])

    def test_get_messages(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        marker = git_repo.get_current_commit()
        commit_files(source_repo, {"x.txt": "x\n"}, "One\n\nBody one")
        commit_files(source_repo, {"y.txt": "y\n"}, "Two")

        messages = git_repo.get_messages(f"{marker}..master")
        assert [m.splitlines()[0] for m in messages] == ["One", "Two"]
        assert "Body one" in messages[0]


class TestFormatPatch:
    """Tests for exporting commits as patches."""

    def test_relative_to_subdirectory(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        sha = commit_files(
            source_repo,
            {"gfx/wr/webrender/src/lib.rs": "pub fn render() { draw(); }\n", "dom/x.cpp": "x\n"},
            "Bug 2 - Draw things",
        )

        text = git_repo.format_patch(sha, relative_to="gfx/wr", pathspecs=["gfx/wr"])
        assert "Subject: Bug 2 - Draw things" in text
        assert "diff --git a/webrender/src/lib.rs b/webrender/src/lib.rs" in text
        assert "dom/x.cpp" not in text
        # No diffstat between the headers and the first diff
        assert " 1 file changed" not in text

    def test_subject_is_kept_verbatim(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        sha = commit_files(source_repo, {"gfx/wr/a.txt": "a\n"}, "[gfx] Keep the brackets")

        text = git_repo.format_patch(sha, relative_to="gfx/wr", pathspecs=["gfx/wr"])
        assert "Subject: [gfx] Keep the brackets" in text

    def test_commit_outside_pathspec_is_empty(self, source_repo: Path):
        """A commit that does not touch the paths must not export an ancestor."""
        git_repo = GitRepository(source_repo)
        commit_files(source_repo, {"gfx/wr/a.txt": "a\n"}, "Inside")
        outside = commit_files(source_repo, {"dom/b.txt": "b\n"}, "Outside")

        text = git_repo.format_patch(outside, relative_to="gfx/wr", pathspecs=["gfx/wr"])
        assert "diff --git" not in text

    def test_root_commit(self, upstream_repo: Path):
        git_repo = GitRepository(upstream_repo)
        text = git_repo.format_patch(git_repo.get_current_commit())
        assert "diff --git a/README.md b/README.md" in text

    def test_non_utf8_content_survives(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        (source_repo / "gfx" / "wr" / "latin1.txt").write_bytes(b"caf\xe9\n")
        sha = commit_files(source_repo, {}, "Bug 3 - Latin-1 fixture")

        text = git_repo.format_patch(sha, relative_to="gfx/wr", pathspecs=["gfx/wr"])
        assert "+caf\udce9" in text
        assert text.encode("utf-8", errors="surrogateescape").count(b"+caf\xe9\n") == 1


class TestBranchOperations:
    """Tests for branch, rebase and am helpers."""

    def test_set_and_delete_branch(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        first = git_repo.get_current_commit()
        second = commit_files(source_repo, {"a.txt": "a\n"}, "Second")

        git_repo.set_branch("wrupdater-synced", second)
        assert git_repo.resolve("wrupdater-synced") == second
        # The worktree and the checked out branch are untouched
        assert git_repo.get_current_branch() == "master"

        git_repo.set_branch("wrupdater-synced", first)
        assert git_repo.resolve("wrupdater-synced") == first

        git_repo.delete_branch("wrupdater-synced")
        assert git_repo.resolve("wrupdater-synced") is None
        # Deleting a missing branch is a no-op
        git_repo.delete_branch("wrupdater-synced")

    def test_checkout_branch_resets(self, target_repo: Path):
        git_repo = GitRepository(target_repo)
        base = git_repo.get_current_commit()
        git_repo.checkout_branch("wrupdater", "origin/master")
        commit_files(target_repo, {"a.txt": "a\n"}, "Local")

        git_repo.checkout_branch("wrupdater", "origin/master")
        assert git_repo.get_current_branch() == "wrupdater"
        assert git_repo.get_current_commit() == base

    def test_rebase_drops_commits_already_upstream(self, upstream_repo: Path, target_repo: Path):
        git_repo = GitRepository(target_repo)
        git_repo.checkout_branch("wrupdater", "origin/master")
        commit_files(target_repo, {"README.md": "# WebRender\nSynced\n"}, "Sync change")
        commit_files(target_repo, {"new.txt": "new\n"}, "Other change")

        # The first change gets merged upstream as a different commit
        commit_files(upstream_repo, {"README.md": "# WebRender\nSynced\n"}, "Merged upstream")
        git_repo.fetch("origin")

        skipped = git_repo.rebase("origin/master")
        assert skipped == []
        assert git_repo.count_commits("origin/master..wrupdater") == 1

    def test_rebase_conflict_aborts(self, upstream_repo: Path, target_repo: Path):
        git_repo = GitRepository(target_repo)
        git_repo.checkout_branch("wrupdater", "origin/master")
        tip = commit_files(target_repo, {"README.md": "# Ours\n"}, "Ours")
        commit_files(upstream_repo, {"README.md": "# Theirs\n"}, "Theirs")
        git_repo.fetch("origin")

        with pytest.raises(GitCommandError):
            git_repo.rebase("origin/master")
        assert not git_repo._rebase_in_progress()
        assert git_repo.get_current_commit() == tip

    def test_rebase_conflict_skipped(self, upstream_repo: Path, target_repo: Path):
        git_repo = GitRepository(target_repo)
        git_repo.checkout_branch("wrupdater", "origin/master")
        conflicting = commit_files(target_repo, {"README.md": "# Ours\n"}, "Ours")
        commit_files(target_repo, {"new.txt": "new\n"}, "Clean")
        commit_files(upstream_repo, {"README.md": "# Theirs\n"}, "Theirs")
        git_repo.fetch("origin")

        skipped = git_repo.rebase("origin/master", skip_conflicts=True)
        assert skipped == [conflicting]
        assert git_repo.count_commits("origin/master..wrupdater") == 1

    def test_apply_patch(self, source_repo: Path, target_repo: Path, temp_dir: Path):
        source = GitRepository(source_repo)
        sha = commit_files(source_repo, {"gfx/wr/README.md": "# WebRender\nhello\n"}, "Say hello")
        patch = temp_dir / "0001.patch"
        patch.write_text(source.format_patch(sha, relative_to="gfx/wr", pathspecs=["gfx/wr"]))

        target = GitRepository(target_repo)
        assert target.apply_patch(patch) is True
        assert (target_repo / "README.md").read_text() == "# WebRender\nhello\n"
        info = target.get_commit(target.get_current_commit())
        assert info.subject == "Say hello"
        assert info.author_email == "test@example.com"

        # Same change again: git finds nothing to commit
        assert target.apply_patch(patch) is False

    def test_apply_patch_conflict_then_abort(self, source_repo: Path, target_repo: Path, temp_dir: Path):
        source = GitRepository(source_repo)
        sha = commit_files(source_repo, {"gfx/wr/README.md": "# Source\n"}, "Source edit")
        patch = temp_dir / "0001.patch"
        patch.write_text(source.format_patch(sha, relative_to="gfx/wr", pathspecs=["gfx/wr"]))

        before = commit_files(target_repo, {"README.md": "# Target\n"}, "Target edit")
        target = GitRepository(target_repo)
        with pytest.raises(GitCommandError):
            target.apply_patch(patch)
        assert target.am_in_progress()

        target.abort_apply()
        assert not target.am_in_progress()
        assert target.get_current_commit() == before

    def test_add_and_commit(self, source_repo: Path):
        git_repo = GitRepository(source_repo)
        assert git_repo.add_and_commit(["dom"], "Nothing") is None

        (source_repo / "dom" / "base" / "Document.cpp").write_text("// changed\n")
        assert not git_repo.is_clean()
        sha = git_repo.add_and_commit(["dom"], "Bug 3 - Change", author="Bot <bot@example.com>")
        assert sha == git_repo.get_current_commit()
        assert git_repo.get_commit(sha).author_name == "Bot"
        assert git_repo.is_clean()
