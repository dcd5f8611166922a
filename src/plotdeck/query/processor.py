"""
Document processor: walks Markdown/YAML inclusions, applies configuration
directives in order and attaches configurations and query results to blocks.
"""
import os
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .blocks import Block, parse_markdown
from .errors import (
    InclusionCycleError,
    MissingFieldError,
    ParseError,
    UnsupportedExtensionError,
)
from .executor import QueryExecutor
from .loader import ConfigurationLoader, read_text
from .models import Configuration, Located
from .session import DEFAULT_DATA_SOURCE, DatabaseSession


logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = (".md", ".markdown", ".txt")
YAML_EXTENSIONS = (".yaml", ".yml")


@dataclass
class ProcessingResult:
    """Blocks, first configuration and final variables of a run."""
    blocks: List[Block]
    config: Configuration
    variables: Dict[str, str]


@dataclass
class ProcessingContext:
    """
    State shared by every file and block of one run.

    Passed by reference through the recursion; nothing here outlives the
    call to ``process``.
    """
    base_directory: str
    variables: Dict[str, str]
    session: DatabaseSession
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    config: Optional[Configuration] = None  # first configuration encountered
    blocks: List[Block] = field(default_factory=list)
    active_paths: List[str] = field(default_factory=list)

    def relative_path(self, path: str) -> str:
        """Path relative to the base directory, for messages and metadata."""
        return os.path.relpath(os.path.realpath(path), self.base_directory)

    def __str__(self):
        return f"[{self.run_id}]"


@contextmanager
def working_directory(path: str):
    """Change the working directory, restoring it on every exit path."""
    previous = os.getcwd()
    os.chdir(path)
    try:
        yield
    finally:
        os.chdir(previous)


class QueryProcessor:
    """Processes a Markdown document tree into annotated blocks."""

    def __init__(self, loader: Optional[ConfigurationLoader] = None):
        self.loader = loader or ConfigurationLoader()

    def process(
        self,
        base_directory: str,
        path: str,
        variables: Optional[Mapping[str, str]] = None,
        default_data_source: str = DEFAULT_DATA_SOURCE
    ) -> ProcessingResult:
        """
        Process a Markdown file and everything it includes.

        Args:
            base_directory: Directory the run was invoked from; relative
                            paths in errors and metadata are based on it
            path: Markdown file, relative to base_directory or absolute
            variables: Caller-supplied variables; never overwritten by
                       parameter defaults
            default_data_source: Database opened lazily by the first query
                                 when no data_source was given

        Returns:
            ProcessingResult with blocks in document order

        Raises:
            PlotdeckError: Any processing failure, located at its source
        """
        base_directory = os.path.realpath(base_directory)
        context = ProcessingContext(
            base_directory=base_directory,
            variables=dict(variables or {}),
            session=DatabaseSession(default_data_source),
        )

        logger.info(f"{context} Processing {path}")
        try:
            self.process_markdown(
                context,
                Located(None, 0, os.path.join(base_directory, path))
            )
        finally:
            context.session.close()

        logger.info(f"{context} Processed {len(context.blocks)} blocks")
        return ProcessingResult(
            blocks=context.blocks,
            config=context.config or Configuration(),
            variables=context.variables,
        )

    def process_markdown(self, context: ProcessingContext, path: Located):
        """
        Process every block of a Markdown file, appending them to the context.

        The working directory is the file's directory while its blocks are
        processed, so nested relative paths resolve against it.

        Args:
            path: File to process, located where it was included from
        """
        source = read_text(path)
        relative_path = context.relative_path(path.value)

        try:
            blocks = parse_markdown(source)
        except ValueError as e:
            raise path.error(ParseError, f"Cannot parse Markdown file: {path.value}", e) from e

        with self._guard_cycle(context, path), \
                working_directory(os.path.dirname(os.path.abspath(path.value))):
            for block in blocks:
                self.process_block(context, relative_path, block)

    def process_block(self, context: ProcessingContext, path: str, block: Block):
        """Apply the block's configuration, if any, then append the block."""
        config = self.loader.try_load_block(path, block, context.variables)
        if config is not None:
            self.process_config(context, path, block, config)

        block.set_data("path", path)
        context.blocks.append(block)

    def process_config(
        self,
        context: ProcessingContext,
        path: str,
        block: Block,
        config: Configuration
    ):
        """
        Apply configuration directives in order: include, parameters,
        data_source or db_config, then queries.
        """
        if context.config is None:
            context.config = config

        if config.include is not None:
            self.process_inclusion(context, path, block, config.include)

        if config.parameters is not None:
            self.process_parameters(context, config.parameters)

        if config.data_source is not None:
            context.session.open(
                config.data_source.value,
                config.settings,
                context.variables,
                config.data_source
            )
        elif config.db_config is not None:
            if context.session.is_open:
                context.session.update(config.settings, config.db_config)
            else:
                context.session.open(None, config.settings, context.variables, config.db_config)

        if config.query is not None or config.query_file is not None:
            QueryExecutor(context.session).execute(block, config, context)

        block.set_data("plotter_config", config)

    def process_inclusion(
        self,
        context: ProcessingContext,
        path: str,
        block: Block,
        include: Located
    ):
        """
        Include a Markdown file (its blocks go before this block) or a YAML
        file (applied to this block as a configuration).

        Raises:
            UnsupportedExtensionError: For any other file type
        """
        extension = os.path.splitext(include.value)[1].lower()
        logger.debug(f"{context} Including {include.value} from {include.path}:{include.line}")

        if extension in MARKDOWN_EXTENSIONS:
            self.process_markdown(context, include)
        elif extension in YAML_EXTENSIONS:
            with self._guard_cycle(context, include):
                source = read_text(include)
                config = self.loader.load(
                    context.relative_path(include.value), source, 1, context.variables
                )
                self.process_config(context, path, block, config)

            # Appended after the included file's own includes, so a chain
            # of YAML includes is listed deepest first.
            included = list(block.get_data("included_configs") or [])
            included.append(config)
            block.set_data("included_configs", included)
        else:
            raise include.error(
                UnsupportedExtensionError, f"Unknown file extension: {extension or include.value}"
            )

    def process_parameters(self, context: ProcessingContext, parameters: Located):
        """
        Bind parameter defaults for names that are not bound yet.

        Raises:
            MissingFieldError: If a declaration has no name
        """
        new_variables = {}
        for parameter in parameters.value:
            if parameter.name is None:
                raise parameter.location.error(MissingFieldError, "Parameter name is required.")

            name = parameter.name.value
            if name not in context.variables and parameter.default is not None:
                context.variables[name] = parameter.default.value
                new_variables[name] = parameter.default.value
                logger.debug(f"{context} Bound parameter {name} from its default")

        if new_variables and context.session.is_open:
            context.session.update_variables(new_variables, parameters)

    @contextmanager
    def _guard_cycle(self, context: ProcessingContext, path: Located):
        canonical = os.path.realpath(path.value)
        if canonical in context.active_paths:
            raise path.error(InclusionCycleError, f"Circular inclusion: {path.value}")

        context.active_paths.append(canonical)
        try:
            yield
        finally:
            context.active_paths.pop()


def process(
    base_directory: str,
    path: str,
    variables: Optional[Mapping[str, str]] = None
) -> ProcessingResult:
    """Process a document with the default configuration loader."""
    return QueryProcessor().process(base_directory, path, variables)
