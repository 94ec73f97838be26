"""
utils.py

Responsibility: small helpers shared by every command.

- `parse_args`: split a command-line string into argv-style tokens
- `RepoToolsError`: base class for errors surfaced by the CLI
- `log` / `error`: log lines prefixed with the build target name
"""

from __future__ import annotations

import logging

logger = logging.getLogger("repotools")

_QUOTES = ("'", '"')


class RepoToolsError(RuntimeError):
    pass


class UnterminatedQuoteError(RepoToolsError, ValueError):
    def __init__(self, text: str, quote: str, position: int) -> None:
        super().__init__(f"Unterminated {quote} quote at position {position}: {text}")
        self.text = text
        self.quote = quote
        self.position = position


def parse_args(text: str) -> list[str]:
    """
    Split `text` on whitespace, treating quoted runs as part of the current token.

    Quote characters are kept in the emitted tokens, so `--foo='bar baz'` is a
    single token `--foo='bar baz'`. Backslashes have no special meaning.

    Raises UnterminatedQuoteError if the input ends inside a quote.
    """
    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None
    opened_at = -1

    for i, ch in enumerate(text):
        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
            opened_at = i
            current.append(ch)
        elif ch.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(ch)

    if quote is not None:
        raise UnterminatedQuoteError(text, quote, opened_at)
    if current:
        tokens.append("".join(current))
    return tokens


def _target_name(target: object) -> str:
    name = getattr(target, "test", None) or target
    return str(name)


def log(target: object, msg: str, *args: object) -> None:
    """Log an info line prefixed with the build target (an options object or a plain name)."""
    logger.info("%s: " + msg, _target_name(target), *args)


def error(target: object, msg: str, *args: object) -> None:
    logger.error("%s: " + msg, _target_name(target), *args)
