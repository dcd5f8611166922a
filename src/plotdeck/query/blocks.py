"""Top-level Markdown blocks with an attachable metadata bag."""
from dataclasses import dataclass, field
from typing import Any, Dict, List
from markdown_it import MarkdownIt
from markdown_it.token import Token


@dataclass
class Block:
    """
    One top-level content unit of a Markdown document.

    The processor annotates blocks through ``set_data``:

    - ``path``: source file, relative to the base directory
    - ``plotter_config``: Configuration parsed from the block, if any
    - ``included_configs``: Configurations applied via included YAML files
    - ``query_results``: QueryResultSet list in execution order
    """
    kind: str  # 'heading', 'paragraph', 'fence', 'html_block', ...
    line: int  # 1-based line of the first source line
    content: str
    tokens: List[Token] = field(default_factory=list, repr=False)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def info(self) -> str:
        """Info string of a fenced code block."""
        return self.tokens[0].info if self.tokens else ""

    @property
    def body(self) -> str:
        """Inner text of a fenced code block, without the fences."""
        return self.tokens[0].content if self.tokens else self.content

    def get_data(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set_data(self, key: str, value: Any):
        self.data[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for JSON output)."""
        result: Dict[str, Any] = {
            'kind': self.kind,
            'line': self.line,
            'content': self.content,
            'path': self.get_data('path'),
        }
        config = self.get_data('plotter_config')
        if config is not None:
            result['plotter_config'] = config.to_dict()
        included = self.get_data('included_configs')
        if included:
            result['included_configs'] = [c.to_dict() for c in included]
        results = self.get_data('query_results')
        if results:
            result['query_results'] = [r.to_dict() for r in results]
        return result


_parser = MarkdownIt("commonmark")


def parse_markdown(source: str) -> List[Block]:
    """
    Split Markdown source into its top-level blocks, in document order.

    Args:
        source: Markdown text

    Returns:
        List of blocks; nested structure (list items, quotes) stays inside
        its top-level block.
    """
    lines = source.splitlines(keepends=True)
    blocks = []
    current: List[Token] = []

    for token in _parser.parse(source):
        current.append(token)
        if token.level != 0 or token.nesting == 1:
            continue

        # token closes a top-level container or is a leaf block
        opening = current[0]
        start, end = opening.map or (0, 0)
        kind = opening.type[:-len("_open")] if opening.nesting == 1 else opening.type
        blocks.append(Block(
            kind=kind,
            line=start + 1,
            content="".join(lines[start:end]),
            tokens=current,
        ))
        current = []

    return blocks
