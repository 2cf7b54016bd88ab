"""Tier file parsing, environment capture, and global config bootstrap."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from wireflow.config import (
    Environment,
    ensure_global_config,
    load_config_file,
    load_environment,
    parse_config_text,
)
from wireflow.config import loaders
from wireflow.config.loaders import DEFAULT_GLOBAL_CONFIG, load_env_tier
from wireflow.errors import ConfigConflictError, ConfigurationError

pytestmark = pytest.mark.unit


# =============================================================================
# parse_config_text
# =============================================================================


def test_parses_scalars_arrays_and_comments() -> None:
    text = """
# comment
MODEL="claude-sonnet-4-5"
TEMPERATURE=0.5
export OUTPUT_FORMAT=json
SYSTEM_PROMPTS=(base science)
CONTEXT_FILES=(
    "notes/one two.md"   # inline comment
    'refs.md'
)
INPUT_PATTERN=
DEPENDS_ON=()
"""
    values = parse_config_text(text, variables={})

    assert values == {
        "MODEL": "claude-sonnet-4-5",
        "TEMPERATURE": "0.5",
        "OUTPUT_FORMAT": "json",
        "SYSTEM_PROMPTS": ["base", "science"],
        "CONTEXT_FILES": ["notes/one two.md", "refs.md"],
        "INPUT_PATTERN": "",
        "DEPENDS_ON": [],
    }


def test_expands_variables_and_tilde() -> None:
    variables = {"HOME": "/home/ada", "PROJ": "/srv/p"}
    text = 'WORKFLOW_PROMPT_PREFIX="$PROJ/prompts"\nWORKFLOW_TASK_PREFIX=~/tasks\n'

    values = parse_config_text(text, variables=variables)

    assert values["WORKFLOW_PROMPT_PREFIX"] == "/srv/p/prompts"
    assert values["WORKFLOW_TASK_PREFIX"] == "/home/ada/tasks"


def test_single_quotes_suppress_expansion() -> None:
    values = parse_config_text("MODEL='$NOPE'\n", variables={"NOPE": "x"})

    assert values["MODEL"] == "$NOPE"


def test_unset_variables_expand_to_empty() -> None:
    values = parse_config_text('MODEL="$MISSING"\n', variables={})

    assert values["MODEL"] == ""


def test_scalar_expansions_are_not_word_split() -> None:
    variables = {"REFS": "notes/*.md refs/*.md", "HOME": "/Users/Jane Doe"}
    text = "CONTEXT_PATTERN=$REFS\nWORKFLOW_PROMPT_PREFIX=$HOME/prompts\n"

    values = parse_config_text(text, variables=variables)

    assert values["CONTEXT_PATTERN"] == "notes/*.md refs/*.md"
    assert values["WORKFLOW_PROMPT_PREFIX"] == "/Users/Jane Doe/prompts"


def test_array_expansions_are_word_split() -> None:
    values = parse_config_text(
        "CONTEXT_FILES=($REFS extra.md)\n", variables={"REFS": "a.md b.md"}
    )

    assert values["CONTEXT_FILES"] == ["a.md", "b.md", "extra.md"]


@pytest.mark.parametrize(
    "text",
    [
        "MODEL=$(whoami)\n",
        "MODEL=`whoami`\n",
        'MODEL="prefix-$(date)"\n',
    ],
)
def test_command_substitution_is_rejected(text: str) -> None:
    with pytest.raises(ConfigurationError) as exc:
        parse_config_text(text, variables={})

    assert "command substitution" in str(exc.value)
    assert exc.value.hint is not None


@pytest.mark.parametrize(
    "text",
    [
        "echo hello\n",
        "if true; then MODEL=x; fi\n",
        "MODEL = x\n",
    ],
)
def test_non_assignments_are_rejected(text: str) -> None:
    with pytest.raises(ConfigurationError) as exc:
        parse_config_text(text, variables={})

    assert "<config>:1" in str(exc.value)


def test_unquoted_whitespace_is_rejected_with_quoting_hint() -> None:
    with pytest.raises(ConfigurationError) as exc:
        parse_config_text("MODEL=claude sonnet\n", variables={})

    assert 'MODEL="claude sonnet"' in (exc.value.hint or "")


def test_unterminated_array_is_rejected() -> None:
    with pytest.raises(ConfigurationError) as exc:
        parse_config_text("SYSTEM_PROMPTS=(base\nscience\n", variables={})

    assert "unterminated" in str(exc.value)


def test_parenthesis_inside_quotes_does_not_close_array() -> None:
    values = parse_config_text('CONTEXT_FILES=("a (1).md" b.md)\n', variables={})

    assert values["CONTEXT_FILES"] == ["a (1).md", "b.md"]


# =============================================================================
# load_config_file
# =============================================================================


def test_missing_file_is_empty_tier(tmp_path: Path) -> None:
    assert load_config_file(tmp_path / "absent") == {}


def test_directory_in_place_of_file_conflicts(tmp_path: Path) -> None:
    (tmp_path / "config").mkdir()

    with pytest.raises(ConfigConflictError):
        load_config_file(tmp_path / "config")


def test_unknown_keys_are_warned_and_ignored(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "config"
    path.write_text('MODEL="m"\nMODLE="typo"\n', encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="wireflow.config.loaders"):
        values = load_config_file(path, variables={})

    assert values == {"MODEL": "m"}
    assert "MODLE" in caplog.text


def test_list_keys_accept_legacy_comma_strings(tmp_path: Path) -> None:
    path = tmp_path / "config"
    path.write_text('SYSTEM_PROMPTS="base,science writer"\n', encoding="utf-8")

    assert load_config_file(path, variables={}) == {
        "SYSTEM_PROMPTS": ["base", "science", "writer"]
    }


def test_scalar_keys_reject_arrays(tmp_path: Path) -> None:
    path = tmp_path / "config"
    path.write_text("MODEL=(a b)\n", encoding="utf-8")

    with pytest.raises(ConfigurationError) as exc:
        load_config_file(path, variables={})

    assert "single value" in str(exc.value)


def test_api_key_dropped_outside_global_file(tmp_path: Path) -> None:
    path = tmp_path / "config"
    path.write_text('ANTHROPIC_API_KEY="sk"\n', encoding="utf-8")

    assert load_config_file(path, variables={}) == {}
    assert load_config_file(path, variables={}, allow_global_only=True) == {
        "ANTHROPIC_API_KEY": "sk"
    }


# =============================================================================
# Environment
# =============================================================================


def test_environment_is_a_frozen_snapshot() -> None:
    source = {"HOME": "/home/ada"}
    env = Environment(source)
    source["HOME"] = "/elsewhere"

    assert env.home == Path("/home/ada")
    with pytest.raises(TypeError):
        env.variables["HOME"] = "x"  # type: ignore[index]


def test_environment_paths_honour_xdg() -> None:
    env = Environment({"HOME": "/home/ada", "XDG_CONFIG_HOME": "/xdg"})

    assert env.config_dir == Path("/xdg/wireflow")


def test_new_prefix_variables_win_over_legacy_names() -> None:
    env = Environment(
        {
            "WIREFLOW_PROMPT_PREFIX": "/new/prompts",
            "WORKFLOW_PROMPT_PREFIX": "/old/prompts",
            "WORKFLOW_TASK_PREFIX": "/old/tasks",
        }
    )

    assert load_env_tier(env) == {
        "WORKFLOW_PROMPT_PREFIX": "/new/prompts",
        "WORKFLOW_TASK_PREFIX": "/old/tasks",
    }


def test_blank_api_key_is_unset() -> None:
    assert Environment({"ANTHROPIC_API_KEY": "  "}).api_key is None


def test_environment_repr_hides_variables() -> None:
    env = Environment({"HOME": "/h", "ANTHROPIC_API_KEY": "sk-secret"})

    assert "sk-secret" not in repr(env)


def test_load_environment_captures_os_environ(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("WIREFLOW_TASK_PREFIX", "/tmp/tasks")

    env = load_environment(dotenv=False)

    assert env.task_prefix == "/tmp/tasks"


@pytest.mark.allow_dotenv
def test_load_environment_reads_dotenv_without_overriding(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_path / ".env").write_text(
        "WIREFLOW_PROMPT_PREFIX=/from/dotenv\nWIREFLOW_TASK_PREFIX=/from/dotenv\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(loaders, "_DOTENV_LOADED", False)
    # Registered so teardown removes what load_dotenv writes.
    monkeypatch.setenv("WIREFLOW_PROMPT_PREFIX", "")
    monkeypatch.delenv("WIREFLOW_PROMPT_PREFIX")
    monkeypatch.setenv("WIREFLOW_TASK_PREFIX", "/from/shell")

    env = load_environment()

    assert env.prompt_prefix == "/from/dotenv"
    assert env.task_prefix == "/from/shell"


# =============================================================================
# ensure_global_config
# =============================================================================


def test_ensure_global_config_bootstraps_once(tmp_path: Path) -> None:
    env = Environment({"HOME": str(tmp_path)})

    path = ensure_global_config(env)

    assert path == tmp_path / ".config" / "wireflow" / "config"
    assert path.read_text(encoding="utf-8") == DEFAULT_GLOBAL_CONFIG
    assert (path.parent / "prompts" / "base.txt").is_file()
    assert (path.parent / "tasks").is_dir()

    path.write_text('MODEL="mine"\n', encoding="utf-8")
    ensure_global_config(env)
    assert path.read_text(encoding="utf-8") == 'MODEL="mine"\n'


def test_default_global_config_parses(tmp_path: Path) -> None:
    env = Environment({"HOME": str(tmp_path)})
    path = ensure_global_config(env)

    values = load_config_file(path, variables=env.variables, allow_global_only=True)

    assert values["SYSTEM_PROMPTS"] == ["base"]
    assert "WORKFLOW_PROMPT_PREFIX" not in values


def test_ensure_global_config_conflict_on_file_in_place_of_dir(
    tmp_path: Path,
) -> None:
    (tmp_path / ".config").mkdir()
    (tmp_path / ".config" / "wireflow").write_text("oops", encoding="utf-8")
    env = Environment({"HOME": str(tmp_path)})

    with pytest.raises(ConfigConflictError) as exc:
        ensure_global_config(env)

    assert "manually" in (exc.value.hint or "")
