from indigo.config_loader import _deep_merge, load_config, validate_api_keys


def test_defaults_without_override(tmp_path, monkeypatch):
    monkeypatch.delenv("INDIGO_ASSISTANT_MODEL", raising=False)
    monkeypatch.delenv("INDIGO_MAX_ITERATIONS", raising=False)
    config = load_config(tmp_path / "missing.yaml")

    assert config.limits.history_window == 10
    assert config.limits.max_visible_issues == 20
    assert config.parser.action_marker == "ACTION:"
    assert "goal achieved" in config.parser.completion_phrases
    assert config.tracker.default_issue_type == "Story"


def test_override_file_is_deep_merged(tmp_path, monkeypatch):
    monkeypatch.delenv("INDIGO_MAX_ITERATIONS", raising=False)
    override = tmp_path / "indigo.yaml"
    override.write_text("limits:\n  max_iterations: 3\ntracker:\n  sprint_field: customfield_99\n")

    config = load_config(override)

    assert config.limits.max_iterations == 3
    assert config.limits.history_window == 10
    assert config.tracker.sprint_field == "customfield_99"
    assert config.tracker.epic_field == "customfield_10014"


def test_env_overrides_win(tmp_path, monkeypatch):
    monkeypatch.setenv("INDIGO_ASSISTANT_MODEL", "anthropic/claude-sonnet-4-5")
    monkeypatch.setenv("INDIGO_MAX_ITERATIONS", "4")

    config = load_config(tmp_path / "missing.yaml")

    assert config.routing.assistant == "anthropic/claude-sonnet-4-5"
    assert config.limits.max_iterations == 4


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    merged = _deep_merge(base, {"a": {"c": 20}, "e": 5})

    assert merged == {"a": {"b": 1, "c": 20}, "d": 3, "e": 5}
    assert base == {"a": {"b": 1, "c": 2}, "d": 3}


def test_validate_api_keys(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "x")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    keys = validate_api_keys()
    assert keys["GEMINI_API_KEY"] is True
    assert keys["OPENAI_API_KEY"] is False
