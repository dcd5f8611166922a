"""Flat ``${name}`` variable expansion."""
import re
from typing import Mapping

from .errors import ExpansionError
from .models import Located


VARIABLE_PATTERN = re.compile(r"\$\{(?P<name>[^}]*)\}")


def expand_variables(text: str, variables: Mapping[str, str], path=None, line=0) -> str:
    """
    Replace every ``${name}`` in text with its value.

    Not recursive: a value containing ``${...}`` is inserted verbatim.

    Raises:
        ExpansionError: If a referenced name is not bound
    """
    def replace(match):
        name = match.group("name")
        if name not in variables:
            raise ExpansionError(path, line, name)
        return variables[name]

    return VARIABLE_PATTERN.sub(replace, text)


def expand_node(node: Located, variables: Mapping[str, str]) -> Located:
    """Expand variables in every string scalar of a located node tree."""
    value = node.value
    if isinstance(value, dict):
        return node.map(lambda v: {k: expand_node(item, variables) for k, item in v.items()})
    if isinstance(value, list):
        return node.map(lambda v: [expand_node(item, variables) for item in v])
    if isinstance(value, str):
        return node.map(lambda v: expand_variables(v, variables, node.path, node.line))
    return node
