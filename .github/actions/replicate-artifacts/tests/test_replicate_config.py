"""Tests for replicate-artifacts input validation and staging."""

from __future__ import annotations

from pathlib import Path

import pytest
from syspath_hack import prepend_to_syspath

SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
prepend_to_syspath(SCRIPTS_DIR)

from replicate_common import LocalIOError, ReplacePolicy, build_config
from replicate_common.config import DownloadLimits, new_staging_dir

from input_validation import InputValidationError, RepositoryRef

VALID_INPUTS = {
    "token": "t",
    "workflow_repo": "octo/build",
    "run_id": "42",
    "release_repo": "octo/app",
    "release_id": "7",
}


class TestBuildConfig:
    """Tests for build_config."""

    def test_defaults(self, tmp_path: Path) -> None:
        """Optional inputs take their documented defaults."""
        config = build_config(**VALID_INPUTS, staging_root=tmp_path)

        assert config.workflow_repo == RepositoryRef("octo", "build")
        assert config.run_id == 42
        assert config.release_repo == RepositoryRef("octo", "app")
        assert config.release_id == 7
        assert config.replace_policy is ReplacePolicy.REPLACE
        assert config.limits == DownloadLimits(10.0, 600.0, 5)
        assert config.api_url == "https://api.github.com"

    def test_overrides(self) -> None:
        """String inputs are converted to typed values."""
        config = build_config(
            **VALID_INPUTS,
            replace_policy="Skip_If_Exists",
            connect_timeout="2.5",
            transfer_timeout="30",
            max_redirects="0",
            api_url="https://ghe.example.com/api/v3",
        )

        assert config.replace_policy is ReplacePolicy.SKIP_IF_EXISTS
        assert config.limits == DownloadLimits(2.5, 30.0, 0)
        assert config.api_url == "https://ghe.example.com/api/v3"

    def test_runner_temp_is_default_staging_root(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """RUNNER_TEMP is preferred over the system temp directory."""
        monkeypatch.setenv("RUNNER_TEMP", str(tmp_path))
        assert build_config(**VALID_INPUTS).staging_root == tmp_path

    @pytest.mark.parametrize(
        ("overrides", "fragment"),
        [
            ({"token": " "}, "token"),
            ({"workflow_repo": "octo"}, "workflow_repo"),
            ({"release_repo": "octo/app/x"}, "release_repo"),
            ({"run_id": "12a"}, "run_id"),
            ({"release_id": "-7"}, "release_id"),
            ({"replace_policy": "overwrite"}, "replace_policy"),
            ({"connect_timeout": "0"}, "connect_timeout"),
            ({"transfer_timeout": "soon"}, "transfer_timeout"),
            ({"max_redirects": "-1"}, "max_redirects"),
        ],
    )
    def test_rejects_invalid_inputs(
        self, overrides: dict[str, str], fragment: str
    ) -> None:
        """Malformed inputs are reported by name."""
        inputs = {**VALID_INPUTS, **overrides}
        with pytest.raises(InputValidationError, match=fragment):
            build_config(**inputs)


class TestNewStagingDir:
    """Tests for new_staging_dir."""

    def test_creates_unique_directories(self, tmp_path: Path) -> None:
        """Each call yields a fresh directory under the root."""
        first = new_staging_dir(tmp_path)
        second = new_staging_dir(tmp_path)

        assert first != second
        assert first.is_dir()
        assert second.is_dir()
        assert first.parent == tmp_path
        assert first.name.startswith("replicate-artifacts-")

    def test_unusable_root_raises(self, tmp_path: Path) -> None:
        """A root that is a file cannot hold the staging directory."""
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(LocalIOError, match="staging directory"):
            new_staging_dir(blocker)
