"""
dejacmd - Shell command history in SQL databases.

dejacmd captures every command typed at an interactive shell, normalizes it into
a canonical record and appends it to a local embedded database and, optionally,
a central shared database. It provides:
- Live logging from a shell prompt hook (dejacmd-log)
- Import of bash, zsh and legacy SQLite history
- Export back to bash or zsh history files
- Search and raw SQL queries against either store

Example usage:
    $ dejacmd-log "$(history 1)" --status $? --pid $$
    $ dejacmd import ~/.bash_history --truncate
    $ dejacmd search "git push" -n 10
"""

__version__ = "0.3.0"
__author__ = "dejacmd Contributors"

__all__ = [
    "__version__",
    "__author__",
]
