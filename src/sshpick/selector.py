"""Fuzzy host picker built on InquirerPy."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from InquirerPy import inquirer
from InquirerPy.base.control import Choice

from .settings import Settings

LOGGER = logging.getLogger(__name__)

# Esc cancels the picker the same way Ctrl-Z does.
SKIP_KEYS = {"skip": [{"key": "escape"}, {"key": "c-z"}]}


class FuzzyHostSelector:
    """Shows one line per host and returns the chosen index.

    InquirerPy has no preview pane, so the preview of the chosen entry is
    printed once the selection is made. Cancelling returns ``None``.
    """

    def __init__(
        self, settings: Optional[Settings] = None, *, logger: Optional[logging.Logger] = None
    ) -> None:
        self.settings = settings or Settings()
        self._logger = logger or LOGGER

    def select(
        self,
        displays: Sequence[str],
        previews: Sequence[str],
        query: str = "",
    ) -> Optional[int]:
        choices = [Choice(value=index, name=label) for index, label in enumerate(displays)]
        try:
            index = inquirer.fuzzy(
                message=self.settings.prompt,
                choices=choices,
                default=query,
                qmark="",
                long_instruction=self.settings.header,
                mandatory=False,
                border=True,
                keybindings=SKIP_KEYS,
            ).execute()
        except KeyboardInterrupt:
            index = None
        if index is None:
            self._logger.debug("Host selection cancelled")
            return None
        print(previews[index])
        return index


__all__ = ["FuzzyHostSelector", "SKIP_KEYS"]
