"""Tests for tddloop.toml loading and validation."""
import re

import pytest

import tddloop
from tddloop import Role


def drop_line(text: str, key: str) -> str:
    return re.sub(rf"^{key} = .*\n", "", text, count=1, flags=re.MULTILINE)


def drop_section(text: str, header: str) -> str:
    return re.sub(rf"^\[{re.escape(header)}\]\n(?:[^\[\n].*\n|\n)*", "", text, count=1, flags=re.MULTILINE)


class TestLoadConfig:
    """Tests for load_config() - config validation contracts."""

    def test_default_config_parses(self, temp_config_file):
        path = temp_config_file(tddloop.DEFAULT_CONFIG_TOML)

        config = tddloop.load_config(path)

        assert config.project_dir == path.resolve().parent
        assert config.kata_description == "kata.md"
        assert config.kata_path == path.resolve().parent / "kata.md"
        assert config.language == "python"
        assert config.steps == 20
        assert config.max_attempts_per_agent == 5
        assert config.roles[Role.IMPLEMENTOR] == tddloop.RoleSettings("gpt-4o", 0.2)
        assert set(config.roles) == set(Role)
        assert config.llm_base_url == "https://api.openai.com/v1"
        assert config.api_key_env == "OPENAI_API_KEY"
        assert config.fmt_cmd == ["ruff", "format", "."]
        assert config.check_cmd == ["ruff", "check", "."]
        assert config.test_cmd == ["pytest", "-q"]
        assert config.format_gates_success is False
        assert config.ci_env == {}
        assert config.author_name == "TDD Machine"
        assert config.author_email == "tdd@local"

    def test_optional_ci_keys(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace(
            "format_gates_success = false",
            "format_gates_success = true\nenv = { PYTHONHASHSEED = 0 }",
        )

        config = tddloop.load_config(temp_config_file(content))

        assert config.format_gates_success is True
        assert config.ci_env == {"PYTHONHASHSEED": 0}

    def test_empty_command_allowed(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace('fmt_cmd = ["ruff", "format", "."]', "fmt_cmd = []")

        assert tddloop.load_config(temp_config_file(content)).fmt_cmd == []

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(tddloop.ConfigError, match="not found"):
            tddloop.load_config(tmp_path / "tddloop.toml")

    def test_invalid_toml(self, temp_config_file):
        with pytest.raises(tddloop.ConfigError, match="Failed to parse"):
            tddloop.load_config(temp_config_file("steps = = 3"))

    @pytest.mark.parametrize("missing_key", [
        "kata_description",
        "language",
        "steps",
        "max_attempts_per_agent",
    ])
    def test_missing_top_level_key(self, temp_config_file, missing_key):
        content = drop_line(tddloop.DEFAULT_CONFIG_TOML, missing_key)

        with pytest.raises(tddloop.ConfigError, match=missing_key):
            tddloop.load_config(temp_config_file(content))

    @pytest.mark.parametrize("section", ["llm", "ci", "commit"])
    def test_missing_section(self, temp_config_file, section):
        content = drop_section(tddloop.DEFAULT_CONFIG_TOML, section)

        with pytest.raises(tddloop.ConfigError, match=section):
            tddloop.load_config(temp_config_file(content))

    @pytest.mark.parametrize("section,key", [
        ("llm", "base_url"),
        ("llm", "api_key_env"),
        ("ci", "fmt_cmd"),
        ("ci", "check_cmd"),
        ("ci", "test_cmd"),
        ("commit", "author_name"),
        ("commit", "author_email"),
    ])
    def test_missing_section_key(self, temp_config_file, section, key):
        content = drop_line(tddloop.DEFAULT_CONFIG_TOML, key)

        with pytest.raises(tddloop.ConfigError, match=rf"\[{section}\] missing required keys: {key}"):
            tddloop.load_config(temp_config_file(content))

    @pytest.mark.parametrize("role", [r.value for r in Role])
    def test_missing_role_section(self, temp_config_file, role):
        content = drop_section(tddloop.DEFAULT_CONFIG_TOML, f"roles.{role}")

        with pytest.raises(tddloop.ConfigError, match=rf"\[roles.{role}\] section is missing"):
            tddloop.load_config(temp_config_file(content))

    def test_role_missing_temperature(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace("temperature = 0.3\n", "")

        with pytest.raises(tddloop.ConfigError, match=r"\[roles.refactorer\] missing required keys: temperature"):
            tddloop.load_config(temp_config_file(content))

    def test_command_must_be_list(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace('test_cmd = ["pytest", "-q"]', 'test_cmd = "pytest -q"')

        with pytest.raises(tddloop.ConfigError, match="test_cmd must be a list of strings"):
            tddloop.load_config(temp_config_file(content))

    def test_max_attempts_must_be_positive(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace("max_attempts_per_agent = 5", "max_attempts_per_agent = 0")

        with pytest.raises(tddloop.ConfigError, match="at least 1"):
            tddloop.load_config(temp_config_file(content))


    @pytest.mark.parametrize("old,new,name", [
        ("steps = 20", 'steps = "twenty"', "steps"),
        ("steps = 20", "steps = 2.5", "steps"),
        ("steps = 20", "steps = true", "steps"),
        ("max_attempts_per_agent = 5", 'max_attempts_per_agent = "5"', "max_attempts_per_agent"),
        ("temperature = 0.4", 'temperature = "warm"', "roles.tester.temperature"),
    ])
    def test_non_numeric_value(self, temp_config_file, old, new, name):
        content = tddloop.DEFAULT_CONFIG_TOML.replace(old, new)

        with pytest.raises(tddloop.ConfigError, match=rf"{re.escape(name)} must be a"):
            tddloop.load_config(temp_config_file(content))

    def test_whole_float_accepted_for_integers(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace("steps = 20", "steps = 20.0")

        assert tddloop.load_config(temp_config_file(content)).steps == 20

    def test_integer_temperature_accepted(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace("temperature = 0.4", "temperature = 1")

        assert tddloop.load_config(temp_config_file(content)).roles[Role.TESTER].temperature == 1.0

    def test_roles_must_be_a_table(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML
        for role in Role:
            content = drop_section(content, f"roles.{role.value}")
        content = 'roles = "gpt-4o"\n' + content

        with pytest.raises(tddloop.ConfigError, match=r"\[roles\] must be a table"):
            tddloop.load_config(temp_config_file(content))

    def test_role_entry_must_be_a_table(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML
        for role in Role:
            content = drop_section(content, f"roles.{role.value}")
        content = (
            'roles = { tester = "gpt-4o", '
            'implementor = { model = "m", temperature = 0.1 }, '
            'refactorer = { model = "m", temperature = 0.1 } }\n'
        ) + content

        with pytest.raises(tddloop.ConfigError, match=r"\[roles.tester\] must be a table"):
            tddloop.load_config(temp_config_file(content))

    def test_section_must_be_a_table(self, temp_config_file):
        content = 'llm = "openai"\n' + drop_section(tddloop.DEFAULT_CONFIG_TOML, "llm")

        with pytest.raises(tddloop.ConfigError, match=r"\[llm\] must be a table"):
            tddloop.load_config(temp_config_file(content))

    def test_ci_env_must_be_a_table(self, temp_config_file):
        content = tddloop.DEFAULT_CONFIG_TOML.replace(
            "format_gates_success = false", 'format_gates_success = false\nenv = "CI=1"'
        )

        with pytest.raises(tddloop.ConfigError, match=r"\[ci\] env must be a table"):
            tddloop.load_config(temp_config_file(content))

    def test_bad_value_reported_by_cli(self, temp_config_file, capsys):
        path = temp_config_file(tddloop.DEFAULT_CONFIG_TOML.replace("steps = 20", 'steps = "many"'))

        assert tddloop.main(["--config", str(path), "--log-file", str(path.parent / "run.log"), "run"]) == 1

        assert "ConfigError: steps must be a number" in capsys.readouterr().out

class TestReadKata:
    def test_reads_relative_to_config(self, temp_config_file):
        path = temp_config_file(tddloop.DEFAULT_CONFIG_TOML)
        (path.parent / "kata.md").write_text("# Bowling")

        assert tddloop.load_config(path).read_kata() == "# Bowling"

    def test_missing_kata_raises(self, temp_config_file):
        config = tddloop.load_config(temp_config_file(tddloop.DEFAULT_CONFIG_TOML))

        with pytest.raises(tddloop.ConfigError, match="Failed to read kata description"):
            config.read_kata()
