"""Custom completer for the bkp REPL."""

from typing import Iterable

from prompt_toolkit.completion import Completer, Completion, PathCompleter
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, SUBCOMMANDS

PATH_COMMANDS = ("snap",)


class BkpCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Subcommand / mode completion for the second token
    - Directory completion for 'snap'
    """

    def __init__(self):
        self._paths = PathCompleter(only_directories=True, expanduser=True)

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_words(COMMANDS, tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        position = len(tokens) if is_typing_new_token else len(tokens) - 1
        current_word = "" if is_typing_new_token else tokens[-1]

        if position == 1 and command in SUBCOMMANDS:
            yield from self._complete_words(SUBCOMMANDS[command], current_word)
        elif position == 1 and command in PATH_COMMANDS:
            yield from self._paths.get_completions(Document(current_word), complete_event)

    def _complete_words(self, words, partial: str) -> Iterable[Completion]:
        """Complete words matching the partial input."""
        partial_lower = partial.lower()
        for word in words:
            if word.startswith(partial_lower):
                yield Completion(word, start_position=-len(partial))
