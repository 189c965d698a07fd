"""
Tests for the command line runner (main.py).

Prompt file loading, argument parsing and config overrides. The run loop
itself is covered by the scheduler tests.
"""

import json
import os
from unittest.mock import patch

import pytest

import main as cli
from sluice.scheduler import InvalidInputError, JobPayload


def _write(tmp_path, data) -> str:
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestLoadPrompts:
    def test_plain_strings(self, tmp_path):
        payloads = cli.load_prompts(_write(tmp_path, ["one", "two"]))
        assert payloads == [JobPayload("one"), JobPayload("two")]

    def test_objects_with_aliases(self, tmp_path):
        data = [
            {"text": "a lighthouse", "image": "img/1.png", "label": "scene 1"},
            {"prompt": "a bridge", "attachment_ref": "img/2.png", "scene": "scene 2"},
        ]

        payloads = cli.load_prompts(_write(tmp_path, data))

        assert payloads == [
            JobPayload("a lighthouse", "img/1.png", "scene 1"),
            JobPayload("a bridge", "img/2.png", "scene 2"),
        ]

    def test_wrapped_in_object(self, tmp_path):
        payloads = cli.load_prompts(_write(tmp_path, {"prompts": ["one"]}))
        assert payloads == [JobPayload("one")]

    def test_not_a_list(self, tmp_path):
        with pytest.raises(InvalidInputError):
            cli.load_prompts(_write(tmp_path, {"something": "else"}))

    def test_bad_entry(self, tmp_path):
        with pytest.raises(InvalidInputError):
            cli.load_prompts(_write(tmp_path, ["ok", 42]))


class TestParseArgs:
    def test_defaults(self):
        args = cli.parse_args([])

        assert args.prompts_file is None
        assert args.max_concurrent is None
        assert args.resume is False

    def test_all_options(self):
        args = cli.parse_args(
            ["prompts.json", "--max-concurrent", "3", "--burst-size", "2", "--db-path", "x.db", "--resume"]
        )

        assert args.prompts_file == "prompts.json"
        assert args.max_concurrent == 3
        assert args.burst_size == 2
        assert args.db_path == "x.db"
        assert args.resume is True


class TestBuildConfig:
    def test_cli_overrides_env(self):
        env = {"SLUICE_MAX_CONCURRENT": "5", "SLUICE_BURST_SIZE": "5"}
        with patch.dict(os.environ, env, clear=False):
            config = cli.build_config(cli.parse_args(["p.json", "--max-concurrent", "2", "--db-path", "run.db"]))

        assert config.max_concurrent == 2
        assert config.burst_size == 5
        assert config.db_path == "run.db"

    def test_invalid_override(self):
        with pytest.raises(ValueError):
            cli.build_config(cli.parse_args(["p.json", "--max-concurrent", "0"]))


class TestMain:
    def test_nothing_to_do(self):
        with patch.object(cli, "setup_logging"), patch.object(cli, "load_dotenv"):
            assert cli.main([]) == 2

    def test_missing_urls(self, tmp_path):
        env = {"SLUICE_SUBMIT_URL": "", "SLUICE_OBSERVE_URL": ""}
        path = _write(tmp_path, ["one"])
        with patch.dict(os.environ, env, clear=False):
            with patch.object(cli, "setup_logging"), patch.object(cli, "load_dotenv"):
                assert cli.main([path]) == 2

    def test_exit_code_reflects_failures(self, tmp_path):
        status = {
            "completed": 1,
            "failed": 1,
            "remaining": 0,
            "total": 2,
            "stats": {"total_sent": 3, "total_errors": 2},
        }

        async def fake_run(args):
            return status

        path = _write(tmp_path, ["one", "two"])
        with patch.object(cli, "setup_logging"), patch.object(cli, "load_dotenv"):
            with patch.object(cli, "run_batch", fake_run):
                assert cli.main([path]) == 1

                status["failed"] = 0
                assert cli.main([path]) == 0
