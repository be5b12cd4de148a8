"""Tests for destination file selection."""

from pathlib import Path

from git_exporter.glob import Glob


class TestGlobMatches:
    """Tests for Glob.matches."""

    def test_everything(self):
        glob = Glob(["**"])
        assert glob.matches("README.md")
        assert glob.matches("a/b/c.txt")

    def test_directory_prefix(self):
        glob = Glob(["src/**"])
        assert glob.matches("src/app.py")
        assert glob.matches("src/pkg/mod.py")
        assert not glob.matches("tests/test_app.py")
        assert not glob.matches("srcfile.py")

    def test_leading_double_star_matches_root(self):
        """Test that '**/' also matches files at the repository root."""
        glob = Glob(["**/*.py"])
        assert glob.matches("setup.py")
        assert glob.matches("pkg/mod.py")
        assert not glob.matches("README.md")

    def test_exclude_wins(self):
        glob = Glob(["**"], exclude=["docs/", "*.secret"])
        assert glob.matches("src/app.py")
        assert not glob.matches("docs/index.md")
        assert not glob.matches("keys/api.secret")


class TestGlobRelativeTo:
    """Tests for Glob.relative_to."""

    def test_absolute_paths(self, temp_dir: Path):
        matcher = Glob(["src/**"]).relative_to(temp_dir)
        assert matcher(temp_dir / "src" / "app.py")
        assert not matcher(temp_dir / "README.md")

    def test_outside_base(self, temp_dir: Path):
        """Test that paths outside the base never match."""
        matcher = Glob(["**"]).relative_to(temp_dir / "repo")
        assert not matcher(temp_dir / "elsewhere" / "file.txt")


class TestGlobRoots:
    """Tests for Glob.roots."""

    def test_wildcard_is_whole_repo(self):
        roots = Glob(["**"]).roots()
        assert roots == {""}
        assert Glob.is_empty_root(roots)

    def test_directory_roots(self):
        roots = Glob(["src/**", "docs/*.md"]).roots()
        assert roots == {"src", "docs"}
        assert not Glob.is_empty_root(roots)

    def test_file_is_own_root(self):
        assert Glob(["LICENSE"]).roots() == {"LICENSE"}

    def test_nested_roots_dropped(self):
        assert Glob(["src/**", "src/pkg/*.py"]).roots() == {"src"}

    def test_any_wildcard_root_covers_all(self):
        assert Glob(["src/**", "*.md"]).roots() == {""}
