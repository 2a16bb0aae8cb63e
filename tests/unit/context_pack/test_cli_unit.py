from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from context_pack import __version__, cli
from context_pack.config import AnalysisResult, ExportFormat, FileRecord
from context_pack.exceptions import NoRootSelectedError
from context_pack.settings import Settings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.unit
def test_parse_args_export_options(tmp_path: Path) -> None:
    settings = cli.parse_args(
        [
            "--token-model",
            "approx",
            "export",
            str(tmp_path),
            "src/a.py",
            "src/b.py",
            "--output",
            "out.xml",
            "--format",
            "xml",
            "--no-tree-view",
            "--no-token-count",
        ],
    )

    assert settings.command == "export"
    assert settings.repo == tmp_path
    assert settings.output == Path("out.xml")
    assert settings.format == "xml"
    assert settings.tree_view is False
    assert settings.no_token_count is True
    assert settings.token_model == "approx"
    assert settings.paths == ["src/a.py", "src/b.py"]


@pytest.mark.unit
def test_parse_args_keeps_environment_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "c.yaml"
    monkeypatch.setenv("CONTEXT_PACK_CONFIG", str(config_file))
    monkeypatch.setenv("CONTEXT_PACK_TOKEN_MODEL", "gpt-4o")

    settings = cli.parse_args(["tree", str(tmp_path)])

    assert settings.config == config_file
    assert settings.token_model == "gpt-4o"
    assert settings.tree_view is None


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


@pytest.mark.unit
def test_parse_args_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args([])


@pytest.mark.unit
def test_export_options_merge_config_and_flags(tmp_path: Path) -> None:
    config_file = tmp_path / "c.yaml"
    config_file.write_text("export_format: xml\ninclude_tree_view: true\nshow_token_count: true\n", encoding="utf-8")

    from_config = cli.export_options(Settings(config=config_file))
    overridden = cli.export_options(
        Settings(config=config_file, format="markdown", tree_view=False, no_token_count=True),
    )

    assert from_config.export_format is ExportFormat.XML
    assert from_config.include_tree_view is True
    assert from_config.show_token_count is True
    assert overridden.export_format is ExportFormat.MARKDOWN
    assert overridden.include_tree_view is False
    assert overridden.show_token_count is False


@pytest.mark.unit
def test_format_analysis() -> None:
    result = AnalysisResult(
        files_info=[FileRecord(path="big.py", tokens=120), FileRecord(path="logo.png", is_binary=True)],
        total_tokens=120,
        skipped_binary_files=1,
    )

    lines = cli.format_analysis(result).splitlines()

    assert lines[0].split() == ["120", "big.py"]
    assert lines[1].split() == ["0", "logo.png", "[binary]"]
    assert lines[-2:] == ["Total tokens: 120", "Skipped binary files: 1"]


@pytest.mark.unit
def test_init_config_prints_default(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["init-config"]) == 0

    out = capsys.readouterr().out
    assert "exclude_patterns:" in out
    assert "export_format: markdown" in out


@pytest.mark.unit
def test_main_reports_user_errors(mocker: MockerFixture, capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    mocker.patch.object(cli.ContextService, "get_directory_tree", side_effect=NoRootSelectedError())

    assert cli.main(["tree", str(tmp_path)]) == 1
    assert "No root directory selected." in capsys.readouterr().err


@pytest.mark.unit
def test_main_reports_missing_config_file(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    assert cli.main(["tree", str(tmp_path), "--config", str(tmp_path / "missing.yaml")]) == 1
    assert "missing.yaml" in capsys.readouterr().err


@pytest.mark.unit
def test_tree_json_output(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("x = 1\n", encoding="utf-8")

    assert cli.main(["tree", str(tmp_path), "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload[0]["type"] == "directory"
    assert payload[0]["itemCount"] == 1
    assert payload[0]["children"][0]["name"] == "app.py"
    assert "lastModified" in payload[0]["children"][0]
