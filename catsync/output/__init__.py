# catsync Output Module
# Rich console output

from catsync.output.console import Console, create_console

__all__ = [
    "Console",
    "create_console",
]
