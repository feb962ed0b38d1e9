"""Unit tests for the CLI helpers and the configuration loader."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pdfquiz.cli.commands import (
    build_parser,
    format_questions_json,
    format_questions_text,
    main,
)
from pdfquiz.config.loader import load_config
from pdfquiz.config.settings import Settings
from pdfquiz.models.question import Difficulty, Question
from pdfquiz.providers.identity.hmac_identity import HmacIdentityProvider


def _questions() -> list[Question]:
    return [
        Question(
            id="q1",
            document_id="d1",
            question="Where does the Calvin cycle run?",
            options=["Nucleus", "Stroma", "Cell wall", "Vacuole"],
            correct_option_index=1,
            difficulty=Difficulty.EASY,
            page_reference="Page 2",
            explanation="The text places it in the stroma.",
        )
    ]


# ======================================================================
# Formatting
# ======================================================================


class TestFormatting:
    def test_text_marks_correct_option(self) -> None:
        text = format_questions_text("Biology", _questions())

        lines = text.splitlines()
        assert lines[0] == "=" * 60
        assert lines[1] == "  Biology -- 1 questions"
        assert "1. Where does the Calvin cycle run?  [easy]" in lines
        assert "   * B) Stroma" in lines
        assert "     A) Nucleus" in lines
        assert "   (Page 2)" in lines

    def test_json_output_is_parseable(self) -> None:
        payload = json.loads(format_questions_json("d1", "Biology", _questions()))

        assert payload["document_id"] == "d1"
        assert payload["title"] == "Biology"
        assert payload["questions"][0]["correct_option_index"] == 1
        assert payload["questions"][0]["difficulty"] == "easy"


# ======================================================================
# Argument parsing
# ======================================================================


class TestParser:
    def test_process_defaults(self) -> None:
        args = build_parser().parse_args(["process", "notes.pdf"])

        assert args.command == "process"
        assert args.pdf == "notes.pdf"
        assert args.owner == "cli"
        assert args.json_output is False
        assert args.quiet is False

    def test_process_flags(self) -> None:
        args = build_parser().parse_args(["process", "notes.pdf", "--json", "--owner", "alice", "-q"])

        assert args.json_output is True
        assert args.owner == "alice"
        assert args.quiet is True

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_token_command_prints_verifiable_token(self, monkeypatch, capsys) -> None:
        monkeypatch.setenv("AUTH_SECRET", "cli-secret")

        assert main(["token", "alice"]) == 0

        token = capsys.readouterr().out.strip()
        verifier = HmacIdentityProvider(Settings(_env_file=None, auth_secret="cli-secret"))
        assert verifier.verify(token) == "alice"

    def test_process_missing_file_fails(self, monkeypatch, tmp_path, capsys) -> None:
        monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "cli.db"))
        monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "objects"))

        assert main(["process", str(tmp_path / "missing.pdf"), "-q"]) == 1
        assert "File not found" in capsys.readouterr().err


# ======================================================================
# load_config
# ======================================================================


class TestLoadConfig:
    def test_environment_wins_over_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "app:\n  name: pdfquiz\n  port: 9999\n"
            "chunker:\n  chunk_size_tokens: 50\n"
            "extra:\n  kept: true\n"
        )
        settings = Settings(_env_file=None, app_port=8123, chunk_size_tokens=700)

        config = load_config(str(config_file), settings=settings)

        assert config["app"]["port"] == 8123
        assert config["app"]["name"] == "pdfquiz"
        assert config["chunker"]["chunk_size_tokens"] == 700
        assert config["extra"] == {"kept": True}

    def test_missing_file_yields_settings_only(self, tmp_path: Path) -> None:
        settings = Settings(_env_file=None, openai_api_key="sk-test", push_enabled=True)

        config = load_config(str(tmp_path / "absent.yaml"), settings=settings)

        assert config["llm"]["available_providers"] == ["openai", "expo"]
        assert config["pipeline"]["max_attempts"] == settings.max_attempts

    def test_available_providers_empty_without_credentials(self) -> None:
        settings = Settings(_env_file=None, openai_api_key="", push_enabled=False)
        assert settings.get_available_providers() == []
