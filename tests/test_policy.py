"""
Tests for the opt-in security policy.

Policies are read from a PolicyConfig snapshot, so every test builds its
own config from a plain dict instead of touching os.environ.
"""

import os

import pytest

from pare.config import PolicyConfig
from pare.errors import InvalidInputError
from pare.policy import (
    assert_allowed_by_policy,
    assert_allowed_root,
    assert_no_path_qualified_command,
)


def _policy(**values: str) -> PolicyConfig:
    return PolicyConfig.from_env(values)


class TestAllowedCommandsPolicy:
    """Tests for ALLOWED_COMMANDS."""

    def test_no_policy_allows_everything(self) -> None:
        """Unset policy is no restriction."""
        assert_allowed_by_policy("anything", "git", _policy())

    def test_empty_policy_allows_everything(self) -> None:
        """An empty value is treated like an unset one."""
        assert_allowed_by_policy("anything", "git", _policy(PARE_ALLOWED_COMMANDS="  "))

    def test_global_policy(self) -> None:
        """Listed commands pass, others are rejected."""
        config = _policy(PARE_ALLOWED_COMMANDS="git, npm")

        assert_allowed_by_policy("git", "git", config)
        assert_allowed_by_policy("npm", "build", config)
        with pytest.raises(InvalidInputError) as exc_info:
            assert_allowed_by_policy("curl", "git", config)

        message = str(exc_info.value)
        assert "ALLOWED_COMMANDS" in message
        assert "git, npm" in message

    def test_matches_basename_and_exact_command(self) -> None:
        """A full path matches by basename, and a listed path matches exactly."""
        assert_allowed_by_policy("/usr/bin/git", "git", _policy(PARE_ALLOWED_COMMANDS="git"))
        assert_allowed_by_policy("npm.cmd", "build", _policy(PARE_ALLOWED_COMMANDS="npm"))
        assert_allowed_by_policy(
            "/opt/tools/custom", "build", _policy(PARE_ALLOWED_COMMANDS="/opt/tools/custom")
        )

    def test_per_server_policy(self) -> None:
        """A per-server policy only applies to that server."""
        config = _policy(PARE_GIT_ALLOWED_COMMANDS="git")

        with pytest.raises(InvalidInputError):
            assert_allowed_by_policy("curl", "git", config)
        assert_allowed_by_policy("curl", "npm", config)

    def test_server_name_normalized(self) -> None:
        """Hyphens in server names become underscores."""
        config = _policy(PARE_MY_SERVER_ALLOWED_COMMANDS="make")

        with pytest.raises(InvalidInputError):
            assert_allowed_by_policy("npm", "my-server", config)

    def test_global_wins_over_server(self) -> None:
        """When both are set, the global policy applies."""
        config = _policy(
            PARE_ALLOWED_COMMANDS="npm",
            PARE_GIT_ALLOWED_COMMANDS="git",
        )

        assert_allowed_by_policy("npm", "git", config)
        with pytest.raises(InvalidInputError):
            assert_allowed_by_policy("git", "git", config)


class TestAllowedRootsPolicy:
    """Tests for ALLOWED_ROOTS."""

    def test_no_policy_allows_any_path(self) -> None:
        """Unset policy is no restriction."""
        assert_allowed_root("/", "git", _policy())

    def test_paths_inside_root(self, tmp_path) -> None:
        """The root itself and its descendants are allowed."""
        config = _policy(PARE_ALLOWED_ROOTS=str(tmp_path))

        assert_allowed_root(str(tmp_path), "git", config)
        assert_allowed_root(str(tmp_path / "sub" / "dir"), "git", config)

    def test_dotdot_cannot_escape(self, tmp_path) -> None:
        """Normalization happens before the comparison."""
        root = tmp_path / "project"
        config = _policy(PARE_ALLOWED_ROOTS=str(root))

        with pytest.raises(InvalidInputError) as exc_info:
            assert_allowed_root(str(root / ".." / "other"), "git", config)

        assert "outside allowed roots" in str(exc_info.value)

    def test_sibling_with_common_prefix_rejected(self, tmp_path) -> None:
        """/x/project2 is not inside /x/project."""
        config = _policy(PARE_ALLOWED_ROOTS=str(tmp_path / "project"))

        with pytest.raises(InvalidInputError):
            assert_allowed_root(str(tmp_path / "project2"), "git", config)

    def test_multiple_roots(self, tmp_path) -> None:
        """Any listed root admits the path."""
        first, second = tmp_path / "a", tmp_path / "b"
        config = _policy(PARE_ALLOWED_ROOTS=f"{first},{second}")

        assert_allowed_root(str(second / "file.txt"), "git", config)

    def test_relative_path_resolved_against_cwd(self, tmp_path, monkeypatch) -> None:
        """Relative paths are made absolute from the working directory."""
        monkeypatch.chdir(tmp_path)
        config = _policy(PARE_ALLOWED_ROOTS=os.fspath(tmp_path))

        assert_allowed_root("src", "git", config)
        with pytest.raises(InvalidInputError):
            assert_allowed_root("..", "git", config)


class TestStrictPath:
    """Tests for PARE_BUILD_STRICT_PATH."""

    def test_disabled_by_default(self) -> None:
        """Path-qualified commands pass unless strict mode is on."""
        assert_no_path_qualified_command("/usr/bin/npm", _policy())

    def test_rejects_path_qualified_commands(self) -> None:
        """Strict mode only accepts bare names."""
        config = _policy(PARE_BUILD_STRICT_PATH="true")

        assert_no_path_qualified_command("npm", config)
        with pytest.raises(InvalidInputError, match="PARE_BUILD_STRICT_PATH"):
            assert_no_path_qualified_command("/tmp/evil/npm", config)
        with pytest.raises(InvalidInputError):
            assert_no_path_qualified_command("..\\bin\\npm", config)

    def test_flag_is_case_insensitive(self) -> None:
        """'TRUE' enables strict mode as well."""
        assert _policy(PARE_BUILD_STRICT_PATH="TRUE").build_strict_path
        assert not _policy(PARE_BUILD_STRICT_PATH="1").build_strict_path
