"""Tests for shell artifact generation."""

from datetime import datetime
from pathlib import Path

import pytest

from tests.conftest import FailingFileSystem, ProfileFactory, snapshot
from zprof.errors import RegenerationFailure
from zprof.filesystem import LocalFileSystem
from zprof.generator import (
    DIVERGENCE_MARKER,
    ENV_FILENAME,
    RC_FILENAME,
    ZIMRC_FILENAME,
    escape_shell_value,
    generate,
    generate_and_write,
    write_artifacts,
)
from zprof.home import backups_dir
from zprof.manifest import Framework, load_and_validate, new_manifest

GENERATED_AT = datetime(2026, 1, 2, 3, 4, 5)
SHARED = Path("/home/user/.zsh-profiles/shared")


def _generate(framework: Framework, **kwargs: object):
    manifest = new_manifest("work", framework, **kwargs)
    return generate(manifest, shared_dir=SHARED, generated_at=GENERATED_AT)


class TestEscapeShellValue:
    """Tests for escape_shell_value."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("plain", "plain"),
            ('say "hi"', 'say \\"hi\\"'),
            ("$HOME", "\\$HOME"),
            ("`whoami`", "\\`whoami\\`"),
            ("C:\\path", "C:\\\\path"),
            ("$(rm -rf /)", "\\$(rm -rf /)"),
        ],
    )
    def test_escapes_special_characters(self, value: str, expected: str) -> None:
        """Verify backslash, quote, dollar and backtick are escaped."""
        # Given / When
        result = escape_shell_value(value)

        # Then
        assert result == expected


class TestGenerate:
    """Tests for generate."""

    def test_output_is_deterministic(self) -> None:
        """Verify the same inputs give byte-identical artifacts."""
        # Given
        manifest = new_manifest("work", Framework.ZIMFW, theme="asciiship", plugins=["git"])

        # When
        first = generate(manifest, shared_dir=SHARED, generated_at=GENERATED_AT)
        second = generate(manifest, shared_dir=SHARED, generated_at=GENERATED_AT)

        # Then
        assert first == second

    def test_timestamp_only_changes_generated_line(self) -> None:
        """Verify generated_at only appears in the header."""
        # Given
        manifest = new_manifest("work", Framework.OH_MY_ZSH, plugins=["git"])

        # When
        a = generate(manifest, shared_dir=SHARED, generated_at=GENERATED_AT)
        b = generate(manifest, shared_dir=SHARED, generated_at=datetime(2030, 6, 7, 8, 9, 10))

        # Then
        diff = [
            (x, y)
            for x, y in zip(a.rc.content.splitlines(), b.rc.content.splitlines(), strict=True)
            if x != y
        ]
        assert len(diff) == 1
        assert diff[0][0].startswith("# Generated: 2026-01-02 03:04:05")

    def test_header_marks_file_as_generated(self) -> None:
        """Verify every artifact starts with the do-not-edit header."""
        # Given / When
        artifacts = _generate(Framework.ZIMFW, plugins=["git"])

        # Then
        for artifact in artifacts.artifacts:
            lines = artifact.content.splitlines()
            assert lines[0] == "# Auto-generated by zprof from profile.toml"
            assert "DO NOT EDIT" in lines[1]
            assert "# Profile: work" in lines
        assert "# Framework: zimfw" in artifacts.rc.content

    def test_env_sets_shared_history(self) -> None:
        """Verify .zshenv points history at the shared directory."""
        # Given / When
        env = _generate(Framework.ZAP).env

        # Then
        assert env.filename == ENV_FILENAME
        assert f'export HISTFILE="{SHARED}/.zsh_history"' in env.content
        assert "export HISTSIZE=10000" in env.content
        assert "export SAVEHIST=10000" in env.content

    def test_env_exports_escaped_values_in_order(self) -> None:
        """Verify env vars are exported in manifest order with escaping."""
        # Given / When
        env = _generate(
            Framework.ZAP, env={"ZED": "last", "PAGER": 'less "-R"', "PROMPT_X": "$USER"}
        ).env

        # Then
        exports = [line for line in env.content.splitlines() if line.startswith("export ")][3:]
        assert exports == [
            'export ZED="last"',
            'export PAGER="less \\"-R\\""',
            'export PROMPT_X="\\$USER"',
        ]

    def test_oh_my_zsh_template(self) -> None:
        """Verify oh-my-zsh theme, plugin list and entry point."""
        # Given / When
        rc = _generate(Framework.OH_MY_ZSH, theme="robbyrussell", plugins=["git", "docker"]).rc

        # Then
        assert rc.filename == RC_FILENAME
        assert 'export ZSH="$ZDOTDIR/.oh-my-zsh"' in rc.content
        assert 'ZSH_THEME="robbyrussell"' in rc.content
        assert "plugins=(\n  git\n  docker\n)" in rc.content
        assert rc.content.index("plugins=(") < rc.content.index("source $ZSH/oh-my-zsh.sh")

    def test_oh_my_zsh_quotes_unsafe_plugin_names(self) -> None:
        """Verify plugin names cannot inject shell syntax."""
        # Given / When
        rc = _generate(Framework.OH_MY_ZSH, plugins=["a;rm -rf ~"]).rc

        # Then
        assert "  'a;rm -rf ~'" in rc.content

    def test_zimfw_template_and_zimrc(self) -> None:
        """Verify zimfw gets a .zimrc with one zmodule per plugin then the theme."""
        # Given / When
        artifacts = _generate(Framework.ZIMFW, theme="asciiship", plugins=["git", "fzf"])

        # Then
        assert 'export ZIM_HOME="$ZDOTDIR/.zim"' in artifacts.rc.content
        assert "source ${ZIM_HOME}/init.zsh" in artifacts.rc.content
        (zimrc,) = artifacts.extras
        assert zimrc.filename == ZIMRC_FILENAME
        modules = [line for line in zimrc.content.splitlines() if line.startswith("zmodule")]
        assert modules == ["zmodule git", "zmodule fzf", "zmodule asciiship"]

    def test_prezto_template(self) -> None:
        """Verify prezto pmodule list and prompt theme."""
        # Given / When
        rc = _generate(Framework.PREZTO, theme="sorin", plugins=["git", "syntax-highlighting"]).rc

        # Then
        assert "zstyle ':prezto:load' pmodule \\\n  git \\\n  syntax-highlighting\n" in rc.content
        assert "zstyle ':prezto:module:prompt' theme sorin" in rc.content
        assert "source $PREZTO_DIR/init.zsh" in rc.content

    def test_zinit_template(self) -> None:
        """Verify zinit loads each plugin and the theme with zinit light."""
        # Given / When
        rc = _generate(
            Framework.ZINIT, theme="romkatv/powerlevel10k", plugins=["zsh-users/zsh-autosuggestions"]
        ).rc

        # Then
        assert "source $ZINIT_HOME/zinit.zsh" in rc.content
        assert "zinit light zsh-users/zsh-autosuggestions" in rc.content
        assert "zinit light romkatv/powerlevel10k" in rc.content

    def test_zap_template(self) -> None:
        """Verify zap plugs each plugin after compinit."""
        # Given / When
        rc = _generate(Framework.ZAP, plugins=["zsh-users/zsh-syntax-highlighting"]).rc

        # Then
        assert "source $ZAP_DIR/zap.zsh" in rc.content
        assert rc.content.index("compinit\n") < rc.content.index(
            'plug "zsh-users/zsh-syntax-highlighting"'
        )

    @pytest.mark.parametrize("framework", list(Framework))
    def test_sources_shared_customizations_last(self, framework: Framework) -> None:
        """Verify every template ends by sourcing shared custom.zsh."""
        # Given / When
        rc = _generate(framework).rc

        # Then
        assert rc.content.rstrip().endswith(f'source "{SHARED}/custom.zsh"')

    @pytest.mark.parametrize("framework", [f for f in Framework if f is not Framework.ZIMFW])
    def test_only_zimfw_has_extras(self, framework: Framework) -> None:
        """Verify non-zimfw frameworks produce exactly two files."""
        # Given / When
        artifacts = _generate(framework)

        # Then
        assert [a.filename for a in artifacts.artifacts] == [RC_FILENAME, ENV_FILENAME]


class TestWriteArtifacts:
    """Tests for write_artifacts."""

    def test_writes_files_with_0644(self, tmp_path: Path) -> None:
        """Verify generated files are written with the expected content and mode."""
        # Given
        artifacts = _generate(Framework.OH_MY_ZSH)

        # When
        written = write_artifacts(tmp_path, artifacts)

        # Then
        assert written == [tmp_path / RC_FILENAME, tmp_path / ENV_FILENAME]
        assert (tmp_path / RC_FILENAME).read_text() == artifacts.rc.content
        assert (tmp_path / RC_FILENAME).stat().st_mode & 0o777 == 0o644

    def test_removes_stale_zimrc(self, tmp_path: Path) -> None:
        """Verify leaving zimfw removes the old .zimrc."""
        # Given
        write_artifacts(tmp_path, _generate(Framework.ZIMFW, plugins=["git"]))
        assert (tmp_path / ZIMRC_FILENAME).exists()

        # When
        write_artifacts(tmp_path, _generate(Framework.OH_MY_ZSH))

        # Then
        assert not (tmp_path / ZIMRC_FILENAME).exists()

    def test_leaves_no_temp_files(self, tmp_path: Path) -> None:
        """Verify atomic writes clean up their temporary files."""
        # Given / When
        write_artifacts(tmp_path, _generate(Framework.ZAP))

        # Then
        assert sorted(p.name for p in tmp_path.iterdir()) == [ENV_FILENAME, RC_FILENAME]


class TestGenerateAndWrite:
    """Tests for generate_and_write."""

    def test_writes_artifacts_and_discards_backup(
        self, zprof_home: Path, write_profile: ProfileFactory
    ) -> None:
        """Verify a successful regeneration leaves no backup behind."""
        # Given
        directory = write_profile("work")
        manifest = load_and_validate("work", home=zprof_home)

        # When
        written = generate_and_write("work", manifest, home=zprof_home)

        # Then
        assert written == [directory / RC_FILENAME, directory / ENV_FILENAME]
        assert "plugins=(\n  git\n  docker\n)" in (directory / RC_FILENAME).read_text()
        assert list(backups_dir(zprof_home).iterdir()) == []

    def test_clears_divergence_marker(self, zprof_home: Path, write_profile: ProfileFactory) -> None:
        """Verify regenerating from a valid manifest clears the marker."""
        # Given
        directory = write_profile("work")
        (directory / DIVERGENCE_MARKER).write_text("stale\n")
        manifest = load_and_validate("work", home=zprof_home)

        # When
        generate_and_write("work", manifest, home=zprof_home)

        # Then
        assert not (directory / DIVERGENCE_MARKER).exists()

    def test_write_failure_rolls_back_and_keeps_backup(
        self, zprof_home: Path, write_profile: ProfileFactory
    ) -> None:
        """Verify a failed write restores the profile byte-for-byte."""
        # Given - artifacts from an earlier generation exist
        directory = write_profile("work")
        manifest = load_and_validate("work", home=zprof_home)
        generate_and_write("work", manifest, home=zprof_home)
        (directory / RC_FILENAME).write_text("# previous rc\n")
        before = snapshot(directory)

        # When - .zshrc is written, then .zshenv fails
        with pytest.raises(RegenerationFailure) as exc_info:
            generate_and_write(
                "work", manifest, home=zprof_home, fs=FailingFileSystem(write_fails_on=ENV_FILENAME)
            )

        # Then
        assert snapshot(directory) == before
        backup = exc_info.value.backup_path
        assert backup is not None
        assert backup.parent == backups_dir(zprof_home)
        assert snapshot(backup) == before

    def test_backup_failure_leaves_profile_untouched(
        self, zprof_home: Path, write_profile: ProfileFactory
    ) -> None:
        """Verify nothing is written when the snapshot cannot be taken."""
        # Given
        directory = write_profile("work")
        manifest = load_and_validate("work", home=zprof_home)
        before = snapshot(directory)

        # When
        with pytest.raises(RegenerationFailure) as exc_info:
            generate_and_write("work", manifest, home=zprof_home, fs=FailingFileSystem(copy_fails=True))

        # Then
        assert snapshot(directory) == before
        assert exc_info.value.backup_path is None
        assert list(backups_dir(zprof_home).iterdir()) == []

    def test_uses_shared_dir_of_home(self, zprof_home: Path, write_profile: ProfileFactory) -> None:
        """Verify HISTFILE points into this home's shared directory."""
        # Given
        directory = write_profile("work")
        manifest = load_and_validate("work", home=zprof_home)

        # When
        generate_and_write("work", manifest, home=zprof_home, fs=LocalFileSystem())

        # Then
        assert f'HISTFILE="{zprof_home}/shared/.zsh_history"' in (directory / ENV_FILENAME).read_text()
