from pathlib import Path

import pytest
from pydantic import ValidationError

from flashdeck.application.config import AppConfig, resolve_config
from flashdeck.application.factory import create_engine
from flashdeck.domain.constants import DEFAULT_PARAMETERS


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config file at a temp location and clear FLASHDECK_* variables."""
    config_file = tmp_path / "config.toml"
    monkeypatch.setattr("flashdeck.application.config.CONFIG_FILE", config_file)
    for key in ("DESIRED_RETENTION", "NEW_CARDS_PER_DAY", "LEARNING_STEPS", "LIBRARY_ROOT"):
        monkeypatch.delenv(f"FLASHDECK_{key}", raising=False)
    return config_file


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    config = resolve_config()

    assert config.desired_retention == 0.9
    assert config.maximum_interval == 36500
    assert config.learning_steps == [10, 30]
    assert config.relearning_steps == [15]
    assert config.parameters == list(DEFAULT_PARAMETERS)
    assert config.fuzzy_match_threshold == 0.7
    assert config.library_root == Path.cwd()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FLASHDECK_DESIRED_RETENTION", "0.85")
    monkeypatch.setenv("FLASHDECK_LEARNING_STEPS", "[1, 5, 20]")

    config = resolve_config()

    assert config.desired_retention == 0.85
    assert config.learning_steps == [1, 5, 20]


def test_toml_file_then_env_then_cli(isolated_config, monkeypatch):
    isolated_config.write_text(
        "desired_retention = 0.8\nnew_cards_per_day = 5\nmaximum_interval = 365\n"
    )
    monkeypatch.setenv("FLASHDECK_NEW_CARDS_PER_DAY", "7")

    config = resolve_config({"maximum_interval": 100, "desired_retention": None})

    assert config.desired_retention == 0.8
    assert config.new_cards_per_day == 7
    assert config.maximum_interval == 100


def test_paths_are_resolved(tmp_path):
    (tmp_path / "lib").mkdir()

    config = resolve_config(
        {"library_root": tmp_path / "lib" / ".." / "lib", "database_path": ":memory:"}
    )

    assert config.library_root == (tmp_path / "lib").resolve()
    assert str(config.database_path) == ":memory:"


@pytest.mark.parametrize(
    "override",
    [
        {"desired_retention": 1.0},
        {"desired_retention": 0},
        {"parameters": [0.1] * 18},
        {"learning_steps": [10, 0]},
        {"fuzzy_match_threshold": 1.5},
        {"maximum_interval": 0},
    ],
)
def test_invalid_values_are_rejected(override):
    with pytest.raises(ValidationError):
        AppConfig(**override)


def test_create_engine_from_config(tmp_path):
    config = AppConfig(
        library_root=tmp_path,
        database_path=":memory:",
        desired_retention=0.85,
        learning_steps=[1],
        new_cards_per_day=3,
        fuzzy_match_threshold=0.8,
    )

    engine = create_engine(config)
    try:
        assert engine.model.desired_retention == 0.85
        assert engine.model.learning_steps == (1,)
        assert engine.sync.fuzzy_match_threshold == 0.8
        assert engine.sync.library_root == tmp_path.resolve()
        assert engine.queue_settings["new_cards_per_day"] == 3
    finally:
        engine.close()
