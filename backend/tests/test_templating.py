from __future__ import annotations

from pulsewatch.services.templating import render_template, replace_variables


def test_static_content_is_unchanged() -> None:
    assert render_template({"msg": "static"}, {"status": "down"}) == {"msg": "static"}


def test_placeholder_replaced() -> None:
    assert render_template({"msg": "{{status}}"}, {"status": "down"}) == {"msg": "down"}


def test_nested_structures_and_scalars() -> None:
    template = {
        "text": "{{monitor_name}} is {{status}}",
        "attachments": [{"title": "{{error}}", "color": "red"}, "{{status_code}}", 7],
        "meta": {"urgent": True, "count": 3, "missing": None},
    }
    variables = {"monitor_name": "API", "status": "down", "error": "Timeout (30s)", "status_code": "0"}

    assert render_template(template, variables) == {
        "text": "API is down",
        "attachments": [{"title": "Timeout (30s)", "color": "red"}, "0", 7],
        "meta": {"urgent": True, "count": 3, "missing": None},
    }


def test_unknown_placeholders_are_left_alone() -> None:
    assert replace_variables("{{status}} / {{nope}}", {"status": "up"}) == "up / {{nope}}"


def test_keys_are_not_rendered() -> None:
    assert render_template({"{{status}}": "x"}, {"status": "up"}) == {"{{status}}": "x"}
