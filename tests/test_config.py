import pytest
import structlog
from pydantic import ValidationError

from eventlens.config import MAX_SPAN_DAYS, IssueDetectionOptions, IssueFindOptions, PersonaDerivationOptions, Settings
from eventlens.log import configure_logging


def test_option_defaults():
    detection = IssueDetectionOptions()
    finding = IssueFindOptions()
    personas = PersonaDerivationOptions()

    assert detection.segment_by == ["country"]
    assert (detection.min_users, detection.min_delta_pct, detection.top_n) == (20, 20.0, 5)
    assert finding.segment_by == ["event_type"]
    assert (finding.min_users, finding.top_n, finding.sample_size) == (1, 6, 3)
    assert (personas.days_back, personas.min_users, personas.max_personas) == (30, 20, 4)
    assert personas.resolved_project_id == "default"


def test_options_accept_camel_case_and_snake_case():
    by_alias = IssueDetectionOptions.model_validate({"segmentBy": ["platform"], "topN": 2, "eventType": "click"})
    by_name = IssueDetectionOptions(segment_by=["platform"], top_n=2, event_type="click")

    assert by_alias == by_name


def test_options_reject_negative_thresholds():
    with pytest.raises(ValidationError):
        IssueDetectionOptions(min_users=-1)
    with pytest.raises(ValidationError):
        PersonaDerivationOptions(days_back=0)


def test_options_reject_spans_beyond_the_limit():
    assert IssueFindOptions(window_days=MAX_SPAN_DAYS).window_days == MAX_SPAN_DAYS
    with pytest.raises(ValidationError):
        PersonaDerivationOptions(days_back=1_000_000)
    with pytest.raises(ValidationError):
        IssueDetectionOptions.model_validate({"windowDays": MAX_SPAN_DAYS + 1})
    with pytest.raises(ValidationError):
        IssueFindOptions(window_days=1_000_000)


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("EVENTLENS_MAX_EVENTS", "500")
    monkeypatch.setenv("EVENTLENS_LOG_JSON", "true")

    settings = Settings()

    assert settings.MAX_EVENTS == 500
    assert settings.LOG_JSON is True


def test_configure_logging_emits_json(capsys):
    configure_logging("debug", json_logs=True)
    try:
        structlog.get_logger().info("issues_detected", returned=2)
        output = capsys.readouterr().out
        assert '"event": "issues_detected"' in output
        assert '"returned": 2' in output
    finally:
        structlog.reset_defaults()


def test_list_options_are_annotated_with_builtin_generics():
    assert IssueDetectionOptions.model_fields["segment_by"].annotation == list[str]
    assert IssueFindOptions.model_fields["segment_by"].annotation == list[str]
