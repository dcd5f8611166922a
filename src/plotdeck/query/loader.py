"""Load configurations from YAML files and configuration blocks."""

import re
import logging
from typing import Iterable, Mapping, Optional
import yaml

from .blocks import Block
from .errors import FileAccessError, ParseError
from .models import Configuration, Located
from .variables import expand_node


logger = logging.getLogger(__name__)

DEFAULT_BLOCK_NAMES = ("plotdeck",)

# Renderer keys whose sequences are concatenated when documents are merged
APPENDING_LIST_KEYS = {"series_colors", "data_label_contents"}

NULL_TAG = "tag:yaml.org,2002:null"


def read_text(path: Located) -> str:
    """
    Read a UTF-8 file.

    Args:
        path: File path, located where it was referenced from

    Raises:
        FileAccessError: If the file cannot be read
    """
    try:
        with open(path.value, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise path.error(FileAccessError, f"Cannot read file: {path.value}", e) from e


class ConfigurationLoader:
    """Parse configurations from YAML sources and Markdown blocks."""

    def __init__(self, block_names: Optional[Iterable[str]] = None):
        """
        Initialize configuration loader.

        Args:
            block_names: Info strings that mark a fenced code block (or the
                        target of a ``<?name ... ?>`` processing instruction)
                        as a configuration block.
        """
        self.block_names = {
            n.strip().lower() for n in (block_names or DEFAULT_BLOCK_NAMES)
        }
        names = "|".join(re.escape(n) for n in sorted(self.block_names))
        self._instruction_pattern = re.compile(
            rf"<\?(?:{names})(?: +|(?=\n))(.+?)\s*\?>\s*$",
            re.DOTALL | re.IGNORECASE
        )

    def try_load_block(
        self,
        path: Optional[str],
        block: Block,
        variables: Mapping[str, str]
    ) -> Optional[Configuration]:
        """
        Parse a block as a configuration if it has the configuration shape.

        Returns:
            Configuration, or None if the block is ordinary content
        """
        if block.kind == "fence":
            info = block.info.strip().lower()
            if info not in self.block_names:
                return None
            # block.line is the opening fence; YAML starts on the next line
            return self.load(path, block.body, block.line + 1, variables)

        if block.kind == "html_block":
            source = self._instruction_source(block.content)
            if source is None:
                return None
            return self.load(path, source, block.line, variables)

        return None

    def _instruction_source(self, content: str) -> Optional[str]:
        match = self._instruction_pattern.match(content.strip())
        if not match:
            return None

        source = match.group(1)
        if "\n" not in source:
            # Single line: treat as a flow mapping
            return source if source.startswith("{") else "{" + source + "}"

        # Strip the common indent of continuation lines
        first, *rest = source.split("\n")
        indents = [len(line) - len(line.lstrip(" ")) for line in rest if line.strip()]
        if indents:
            indent = min(indents)
            rest = [line[indent:] if line.strip() else line for line in rest]
        return "\n".join([first] + rest)

    def load(
        self,
        path: Optional[str],
        source: str,
        first_line: int,
        variables: Mapping[str, str]
    ) -> Configuration:
        """
        Parse YAML source into a configuration, expanding variables.

        Multiple YAML documents are merged in order. Mappings merge key by
        key; a later scalar or sequence replaces the earlier one, except for
        the renderer color and label lists, which are concatenated.

        Args:
            path: File path for error reporting (relative to base directory)
            source: YAML text
            first_line: 1-based file line of the first line of source
            variables: Variables to expand in string scalars

        Raises:
            ParseError: If the YAML is malformed or not a mapping
            ExpansionError: If a scalar references an unbound variable
        """
        try:
            documents = list(yaml.compose_all(source, Loader=yaml.SafeLoader))
        except yaml.MarkedYAMLError as e:
            mark = e.problem_mark or e.context_mark
            line = first_line + (mark.line if mark else 0)
            message = f"Invalid YAML format: {e.problem}" if e.problem else "Invalid YAML format."
            raise ParseError(path, line, message, e) from e
        except yaml.YAMLError as e:
            raise ParseError(path, first_line, "Invalid YAML format.", e) from e

        merged = Located(path, first_line, {})
        for document in documents:
            if document is None:
                continue
            node = _to_located(document, path, first_line)
            if node.value is None:
                continue
            if not isinstance(node.value, dict):
                raise node.error(ParseError, "Mapping is expected.")
            merged = _merge(merged, node)

        config = Configuration.from_node(expand_node(merged, variables))
        logger.debug(f"Loaded configuration from {path}:{first_line}")
        return config


def _to_located(node: yaml.Node, path: Optional[str], first_line: int) -> Located:
    line = first_line + node.start_mark.line

    if isinstance(node, yaml.MappingNode):
        items = {}
        for key_node, value_node in node.value:
            if not isinstance(key_node, yaml.ScalarNode):
                raise ParseError(path, first_line + key_node.start_mark.line, "Scalar key is expected.")
            items[key_node.value] = _to_located(value_node, path, first_line)
        return Located(path, line, items)

    if isinstance(node, yaml.SequenceNode):
        return Located(path, line, [_to_located(n, path, first_line) for n in node.value])

    if node.tag == NULL_TAG:
        return Located(path, line, None)
    return Located(path, line, node.value)


def _merge(base: Located, update: Located) -> Located:
    """Merge mappings key by key; a later scalar or sequence replaces the earlier one."""
    items = dict(base.value)
    for key, value in update.value.items():
        existing = items.get(key)
        if existing is not None and isinstance(existing.value, dict) and isinstance(value.value, dict):
            value = _merge(existing, value)
        elif (
            key in APPENDING_LIST_KEYS
            and existing is not None
            and isinstance(existing.value, list)
            and isinstance(value.value, list)
        ):
            value = Located(value.path, value.line, existing.value + value.value)
        items[key] = value
    return Located(base.path, base.line, items)
