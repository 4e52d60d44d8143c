"""Webhook body templating.

A template is any JSON value. Every string leaf has its ``{{name}}``
placeholders replaced; objects and arrays are walked recursively and all
other scalars pass through untouched.
"""
from functools import singledispatch
from typing import Any, Dict, Mapping

TEMPLATE_VARIABLES = (
    "monitor_name",
    "monitor_url",
    "status",
    "error",
    "timestamp",
    "response_time",
    "status_code",
)


def replace_variables(template: str, variables: Mapping[str, Any]) -> str:
    """Replace every ``{{key}}`` in a string with its variable value."""
    result = template
    for key, value in variables.items():
        result = result.replace("{{" + key + "}}", str(value))
    return result


@singledispatch
def render_template(node: Any, variables: Mapping[str, Any]) -> Any:
    """Render a template node; scalars (numbers, booleans, null) are returned as-is."""
    return node


@render_template.register
def _(node: str, variables: Mapping[str, Any]) -> str:
    return replace_variables(node, variables)


@render_template.register
def _(node: dict, variables: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: render_template(value, variables) for key, value in node.items()}


@render_template.register
def _(node: list, variables: Mapping[str, Any]) -> list:
    return [render_template(item, variables) for item in node]
