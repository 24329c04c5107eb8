"""
The HUMAN log level (25).

upskill narrates each run for the person at the terminal: the registries it
searched, the candidate it picked and why, where the package landed and
where its skill bundle was written. Those records are logged at HUMAN.

Placing it between INFO and WARNING lets the human handler select exactly
these records, keeps the WARNING-level technical console from repeating
them, and leaves them in the JSON log file beside the DEBUG/INFO detail.

Importing this module registers the level with both stdlib logging and
structlog, so it must be imported before any HUMAN record is emitted
(``upskill.logging`` does this).
"""

import logging

import structlog

HUMAN = 25

logging.addLevelName(HUMAN, "HUMAN")


def _log_human(self: logging.Logger, message, *args, **kwargs) -> None:
    """Logger.human(): structlog's stdlib BoundLogger forwards .human() here."""
    if self.isEnabledFor(HUMAN):
        self._log(HUMAN, message, args, **kwargs)


logging.Logger.human = _log_human

# structlog.stdlib.add_log_level names records through these tables
for _table, _key, _value in (
    ("LEVEL_TO_NAME", HUMAN, "human"),
    ("NAME_TO_LEVEL", "human", HUMAN),
):
    _mapping = getattr(structlog.stdlib, _table, None)
    if isinstance(_mapping, dict):
        _mapping[_key] = _value
