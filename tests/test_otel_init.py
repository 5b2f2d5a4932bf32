"""Tests for the OpenTelemetry bootstrap helpers."""

import otel_init


def test_module_exposes_tracer_helper_only():
    assert callable(otel_init.get_tracer)
    assert not hasattr(otel_init, "get_meter")


def test_get_tracer_works_without_setup():
    tracer = otel_init.get_tracer("tests")
    with tracer.start_as_current_span("noop") as span:
        span.set_attribute("app.name", "backup")


def test_parse_otlp_headers():
    assert otel_init.parse_otlp_headers("", "tracing") is None
    assert otel_init.parse_otlp_headers("a=1, b = 2", "tracing") == {"a": "1", "b": "2"}
    assert otel_init.parse_otlp_headers("garbage", "logs") == {}
