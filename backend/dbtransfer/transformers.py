"""Attribute value transformers.

A transformer replaces the value of a mapped column before it is converted for the
target. It receives the full source row (as a name -> value dict) so values can be derived
from other columns. Transformers are registered in ``TRANSFORMERS`` under a string id.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from dbtransfer.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

Transformer = Callable[[Dict[str, Any], Any], Any]


class _RowDict(dict):
    """Row mapping for templates; unknown names raise KeyError naming the column."""

    def __missing__(self, key):
        raise KeyError(f"Unknown column in template: {key}")


def null_transformer(properties: Dict[str, Any]) -> Transformer:
    """Always produce NULL."""
    def transform(row: Dict[str, Any], value: Any) -> Any:
        return None
    return transform


def constant_transformer(properties: Dict[str, Any]) -> Transformer:
    """Produce the ``value`` property for every row."""
    if "value" not in properties:
        raise ConfigurationError("constant transformer requires a 'value' property", option="transformer")
    constant = properties["value"]

    def transform(row: Dict[str, Any], value: Any) -> Any:
        return constant
    return transform


def template_transformer(properties: Dict[str, Any]) -> Transformer:
    """Format the ``template`` property with the source row, e.g. ``"{first} {last}"``."""
    template = properties.get("template")
    if not template:
        raise ConfigurationError("template transformer requires a 'template' property", option="transformer")

    def transform(row: Dict[str, Any], value: Any) -> Any:
        return template.format_map(_RowDict(row, value=value))
    return transform


def column_transformer(properties: Dict[str, Any]) -> Transformer:
    """Copy the value of another source column (``column`` property)."""
    column = properties.get("column")
    if not column:
        raise ConfigurationError("column transformer requires a 'column' property", option="transformer")

    def transform(row: Dict[str, Any], value: Any) -> Any:
        if column not in row:
            raise KeyError(f"Unknown source column: {column}")
        return row[column]
    return transform


def expression_transformer(properties: Dict[str, Any]) -> Transformer:
    """Apply a Python callable given in the ``function`` property."""
    function = properties.get("function")
    if not callable(function):
        raise ConfigurationError("expression transformer requires a callable 'function' property", option="transformer")

    def transform(row: Dict[str, Any], value: Any) -> Any:
        return function(row, value)
    return transform


TRANSFORMERS: Dict[str, Callable[[Dict[str, Any]], Transformer]] = {
    "null": null_transformer,
    "constant": constant_transformer,
    "template": template_transformer,
    "column": column_transformer,
    "expression": expression_transformer,
}


def create_transformer(transformer_id: str, properties: Optional[Dict[str, Any]] = None) -> Transformer:
    """Instantiate a registered transformer.

    Raises:
        ConfigurationError: If the id is not registered or properties are incomplete
    """
    factory = TRANSFORMERS.get(transformer_id)
    if factory is None:
        raise ConfigurationError(f"Unknown value transformer: {transformer_id}", option="transformer")
    return factory(dict(properties or {}))
