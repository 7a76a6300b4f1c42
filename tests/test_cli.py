"""
Tests for the CLI interface.
"""
import json
import os
import tempfile
from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from adventure_forge.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL, EXIT_CODE_REFUSED
from adventure_forge.core.errors import RateLimitExceeded
from adventure_forge.core.orchestrator import Completion

runner = CliRunner()

SCAFFOLD_RESPONSE = json.dumps({
    "title": "The Withering Grove",
    "description": "Corruption creeps toward the village.",
    "estimatedDuration": "3-4 hours",
    "movements": [
        {"id": "m1", "title": "Thorn Gate", "type": "combat", "description": "Brambles attack."},
    ]
})


@pytest.fixture
def config_path():
    """Write a config pointing at a temporary database."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "forge.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump({"storage": {"db_path": os.path.join(temp_dir, "forge.db")}}, f)
        yield path


@pytest.fixture
def initialized(config_path):
    """Config whose database schema already exists."""
    result = runner.invoke(app, ["--config", config_path, "init"])
    assert result.exit_code == EXIT_CODE_PASS
    return config_path


@pytest.fixture
def mock_llm():
    """Replace the OpenAI client with a scripted one."""
    with patch('adventure_forge.cli.main.OpenAICompletionClient') as mock_class:
        client = MagicMock()
        client.complete.return_value = Completion(
            text=SCAFFOLD_RESPONSE, model="gpt-4-test", total_tokens=200
        )
        mock_class.return_value = client
        yield client


class TestCLI:
    """Test CLI commands."""

    def test_init(self, config_path):
        """Test that init creates the database schema."""
        result = runner.invoke(app, ["--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output

    def test_missing_config_file(self):
        """Test that a missing config file fails before any command runs."""
        result = runner.invoke(app, ["--config", "/nonexistent/forge.yaml", "init"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading configuration" in result.output

    def test_invalid_yaml_config(self):
        """Test that unparseable YAML fails with a configuration error instead of a traceback."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "forge.yaml")
            with open(path, 'w', encoding='utf-8') as f:
                f.write("llm: [unclosed")

            result = runner.invoke(app, ["--config", path, "balance", "u1"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading configuration" in result.output

    def test_add_credits_and_balance(self, initialized):
        """Test that added credits show up in the balance."""
        result = runner.invoke(app, ["--config", initialized, "add-credits", "u1", "5"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "New balance: 5" in result.output

        result = runner.invoke(app, ["--config", initialized, "balance", "u1"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "5" in result.output

    def test_add_credits_rejects_non_positive(self, initialized):
        """Test that a zero amount is rejected."""
        result = runner.invoke(app, ["--config", initialized, "add-credits", "u1", "0"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "positive integer" in result.output

    def test_balance_without_schema_fails(self, config_path):
        """Test that reading a balance before init reports an error."""
        result = runner.invoke(app, ["--config", config_path, "balance", "u1"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error" in result.output

    def test_history(self, initialized):
        """Test that history lists purchases with signed amounts."""
        runner.invoke(app, ["--config", initialized, "add-credits", "u1", "3", "--source", "purchase"])

        result = runner.invoke(app, ["--config", initialized, "history", "u1"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "purchase" in result.output
        assert "+3" in result.output

    def test_history_empty(self, initialized):
        """Test that history for an unknown user says there is nothing to show."""
        result = runner.invoke(app, ["--config", initialized, "history", "nobody"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No credit transactions" in result.output

    def test_regenerations_unknown_adventure(self, initialized):
        """Test that regeneration usage for an unknown adventure fails."""
        result = runner.invoke(app, ["--config", initialized, "regenerations", "missing"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Adventure not found" in result.output

    def test_cache_stats_empty(self, initialized):
        """Test that cache statistics on a fresh database are zero."""
        result = runner.invoke(app, ["--config", initialized, "cache-stats"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Entries: 0" in result.output

    def test_scaffold_generates_and_charges(self, initialized, mock_llm):
        """Test that a scaffold is generated, charged, cached and gets regeneration counters."""
        runner.invoke(app, ["--config", initialized, "add-credits", "u1", "2"])

        result = runner.invoke(app, [
            "--config", initialized, "scaffold", "u1",
            "--frame", "witherwild", "--focus", "Rescue the warden", "--party-level", "4"
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "generated" in result.output
        assert "Credits remaining: 1" in result.output
        assert "The Withering Grove" in result.output
        mock_llm.complete.assert_called_once()

        adventure_id = result.output.split("Adventure ")[1].split(" ")[0]
        result = runner.invoke(app, ["--config", initialized, "regenerations", adventure_id])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Scaffold: 0/10 used" in result.output

        result = runner.invoke(app, ["--config", initialized, "cache-stats"])
        assert "Entries: 1" in result.output

    def test_scaffold_without_credits_is_refused(self, initialized, mock_llm):
        """Test that a user without credits is refused before the LLM is called."""
        result = runner.invoke(app, [
            "--config", initialized, "scaffold", "u1", "--frame", "witherwild", "--focus", "Rescue"
        ])

        assert result.exit_code == EXIT_CODE_REFUSED
        assert "Insufficient credits" in result.output
        mock_llm.complete.assert_not_called()

    def test_scaffold_invalid_party(self, initialized, mock_llm):
        """Test that an out-of-range party size is rejected as an invalid request."""
        result = runner.invoke(app, [
            "--config", initialized, "scaffold", "u1",
            "--frame", "witherwild", "--focus", "Rescue", "--party-size", "12"
        ])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "party_size" in result.output

    def test_scaffold_rate_limited_is_refused(self, initialized, mock_llm):
        """Test that a rate-limited scaffold exits with the refusal code and the retry delay."""
        with patch('adventure_forge.cli.main.GenerationOrchestrator.from_config') as mock_from_config:
            mock_from_config.return_value.generate_scaffold.side_effect = RateLimitExceeded("scaffold", 120)
            result = runner.invoke(app, [
                "--config", initialized, "scaffold", "u1", "--frame", "witherwild", "--focus", "Rescue"
            ])

        assert result.exit_code == EXIT_CODE_REFUSED
        assert "Rate limit exceeded for scaffold" in result.output
        assert "120 seconds" in result.output
