"""Thread-safe sensitive word list loaded from plain text files."""

import logging
import threading
from collections.abc import Iterable
from typing import Optional

DEFAULT_FILE_PATHS = ("config/sensitive_words.txt",)


class SensitiveWords:
    """A set of sensitive words that can be reloaded from files at any time.

    Word files hold one word per line; blank lines and lines starting with
    ``#`` are ignored.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        file_paths: Optional[Iterable[str]] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._words: set[str] = set()
        self._file_paths: list[str] = list(
            DEFAULT_FILE_PATHS if file_paths is None else file_paths
        )
        self.update()

    @property
    def file_paths(self) -> list[str]:
        """The files the word list is loaded from."""
        with self._lock:
            return list(self._file_paths)

    def update(self) -> None:
        """Reload the word list from its files.

        Files that cannot be read are logged and skipped. The current list is
        replaced only when at least one word was loaded.
        """
        new_words: set[str] = set()
        for path in self.file_paths:
            try:
                self._load_from_file(path, new_words)
            except (OSError, UnicodeDecodeError) as exc:
                self._logger.warning("Failed to load sensitive words from %s: %s", path, exc)

        if new_words:
            with self._lock:
                self._words = new_words
            self._logger.info("Loaded %d sensitive words", len(new_words))

    @staticmethod
    def _load_from_file(path: str, words: set[str]) -> None:
        with open(path, encoding="utf-8") as handle:
            for line in handle:
                word = line.strip()
                if word and not word.startswith("#"):
                    words.add(word)

    def add_word(self, word: str) -> None:
        """Add one word; empty words are ignored."""
        if not word:
            return
        with self._lock:
            self._words.add(word)

    def remove_word(self, word: str) -> None:
        """Remove one word if it is present."""
        with self._lock:
            self._words.discard(word)

    def contains_word(self, content: str) -> Optional[str]:
        """Return a sensitive word that occurs in ``content``, or None."""
        if not content:
            return None
        with self._lock:
            words = tuple(self._words)
        return next((word for word in words if word in content), None)

    def all_words(self) -> list[str]:
        """Return every sensitive word, sorted."""
        with self._lock:
            return sorted(self._words)

    def set_word_list(self, words: Iterable[str]) -> None:
        """Replace the whole word list; empty words are skipped."""
        new_words = {word for word in words if word}
        with self._lock:
            self._words = new_words

    def add_file_path(self, path: str) -> None:
        """Add a file to load words from on the next update."""
        with self._lock:
            self._file_paths.append(path)