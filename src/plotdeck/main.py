"""
Command-line entry point: process a Markdown document and write the
annotated blocks as JSON for a renderer.
"""
import os
import sys
import json
import logging
import argparse
import traceback
from typing import Dict, List, Optional

from plotdeck.config import load_settings, setup_logging
from plotdeck.query import (
    ArgumentFormatError,
    ConfigurationLoader,
    PlotdeckError,
    ProcessingResult,
    QueryProcessor,
)
from plotdeck.query.models import resolve_path

logger = logging.getLogger(__name__)

QUIET_LEVELS = ("quiet", "q", "minimal", "m", "normal", "n", "detailed", "d")
DIAGNOSTIC_LEVELS = ("", "diagnostic", "diag")


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='plotdeck',
        description='Run the queries of a Markdown document and write annotated blocks as JSON',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  plotdeck report.md                         Write report.json
  plotdeck report.md --arg year=2024 -o out.json

  # Environment variables (or .env):
  PLOTDECK_LOG_LEVEL=DEBUG plotdeck report.md
        """
    )

    parser.add_argument('input', help='Input Markdown file')
    parser.add_argument('--template', help='Template file passed on to the renderer')
    parser.add_argument('--output', '-o', help='Output JSON file')
    parser.add_argument(
        '--argument', '--arg',
        dest='arguments',
        action='append',
        default=[],
        metavar='NAME=VALUE',
        help='Variable binding. Can be specified multiple times'
    )
    parser.add_argument(
        '--verbosity', '-v',
        default='diagnostic',
        help='Quiet or Diagnostic (default)'
    )
    parser.add_argument('-q', dest='quiet', action='store_true', help='Alias for --verbosity quiet')

    return parser.parse_args(argv)


def parse_arguments(pairs: List[str]) -> Dict[str, str]:
    """
    Parse NAME=VALUE pairs into a variables dict.

    Raises:
        ArgumentFormatError: If a pair has no name or no value
    """
    arguments = {}
    for pair in pairs:
        index = pair.find('=')
        if 0 < index < len(pair) - 1:
            arguments[pair[:index].strip()] = pair[index + 1:]
        else:
            raise ArgumentFormatError(
                None, None, f"Invalid argument format: '{pair}'. Expected NAME=VALUE."
            )
    return arguments


def is_quiet(verbosity: str, quiet: bool) -> bool:
    """
    Resolve verbosity options to quiet mode.

    Raises:
        ArgumentFormatError: If verbosity is not a known level
    """
    if quiet:
        return True

    level = verbosity.lower()
    if level in DIAGNOSTIC_LEVELS:
        return False
    if level in QUIET_LEVELS:
        return True

    raise ArgumentFormatError(
        None, None,
        'Invalid verbosity. "Quiet", "Q", "Minimal", "M", "Normal", "N", '
        '"Detailed", "D", "Diagnostic", or "Diag" is expected.'
    )


def build_document(result: ProcessingResult, source: str, template: Optional[str]) -> dict:
    """Assemble the JSON document handed to a renderer."""
    return {
        'source': source,
        'template': template,
        'variables': result.variables,
        'blocks': [block.to_dict() for block in result.blocks],
    }


def run(argv: Optional[List[str]] = None) -> int:
    """
    Process the input document and write the output file.

    Returns:
        Process exit code
    """
    args = parse_args(argv)

    try:
        settings = load_settings()
        setup_logging(settings.log_level)

        quiet = is_quiet(args.verbosity, args.quiet)
        variables = parse_arguments(args.arguments)

        current_directory = os.getcwd()
        input_path = os.path.abspath(args.input)
        processor = QueryProcessor(ConfigurationLoader(settings.block_names))
        result = processor.process(
            current_directory,
            os.path.relpath(input_path, current_directory),
            variables,
            default_data_source=settings.default_data_source
        )

        config = result.config
        if config.output is not None:
            output_file = resolve_path(config.output, current_directory)
        elif args.output:
            output_file = os.path.abspath(args.output)
        else:
            output_file = os.path.splitext(input_path)[0] + '.json'

        if config.template is not None:
            template_file = resolve_path(config.template, current_directory)
        elif args.template:
            template_file = os.path.abspath(args.template)
        else:
            template_file = None

        document = build_document(
            result, os.path.relpath(input_path, current_directory), template_file
        )
        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, ensure_ascii=False, default=str)
        logger.info(f"Wrote {len(result.blocks)} blocks to {output_file}")

        if not quiet:
            print(
                f"Successfully converted {os.path.basename(input_path)} to "
                f"{os.path.relpath(output_file, current_directory)}.",
                file=sys.stderr
            )
        return 0

    except PlotdeckError as e:
        print(e.message_with_location, file=sys.stderr)
        return 1
    except Exception as e:
        traceback.print_exception(e, file=sys.stderr)
        return 1


def main():
    """Console script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
