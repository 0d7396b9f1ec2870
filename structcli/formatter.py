"""
Help formatting for compiled parsers.

HelpFormatter sizes help output to the terminal (as measured by rich) and keeps
the line structure authors put in help text, descriptions and epilogs: explicit
newlines survive, and each line is wrapped on word boundaries.
"""
import argparse
import textwrap

from rich.console import Console


class HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog, indent_increment=2, max_help_position=24, width=None, **options):
        if width is None:
            width = Console().width - 2
        super().__init__(prog, indent_increment, max_help_position, width, **options)

    def _split_lines(self, text, width):
        lines = []
        for line in text.strip().splitlines():
            lines.extend(textwrap.wrap(line, width) or [""])
        return lines

    def _fill_text(self, text, width, indent):
        # descriptions and epilogs
        return "\n".join(indent + line if line else "" for line in self._split_lines(text, width - len(indent)))


__all__ = (
    "HelpFormatter",
)
