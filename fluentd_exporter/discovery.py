"""Derive instance identifiers from process listings."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Literal, Set

LOGGER = logging.getLogger(__name__)

CONF_PATTERN = re.compile(r"\W([\w.]+?\.conf)")
CONF_SUFFIX = ".conf"


class InstanceExtractionError(ValueError):
    """Raised when a daemon line carries a config token the pattern cannot read."""


def extract_instance_ids(
    lines: Iterable[str],
    *,
    primary_marker: str = "fluentd",
    secondary_marker: str = "td-agent",
    fallback_id: str = "td-agent",
    on_unmatched: Literal["fail", "skip"] = "fail",
) -> Set[str]:
    """Return the distinct instance ids found in ``lines``.

    A line naming the primary marker together with a ``.conf`` argument yields
    the config file name (suffix kept). A line naming only the secondary
    marker yields its config file name when one is present and
    ``fallback_id`` otherwise. Every other line is ignored.

    ``on_unmatched`` decides what happens when a primary line mentions
    ``.conf`` but no config file name can be read from it: ``"fail"`` raises
    :class:`InstanceExtractionError`, ``"skip"`` logs and drops the line.
    """

    instance_ids: Set[str] = set()
    for line in lines:
        if primary_marker in line and CONF_SUFFIX in line:
            match = CONF_PATTERN.search(line)
            if match is None:
                if on_unmatched == "fail":
                    raise InstanceExtractionError(f"No config file name in process line: {line!r}")
                LOGGER.warning("Skipping process line without config file name", extra={"line": line})
                continue
            instance_ids.add(match.group(1))
        elif secondary_marker in line:
            match = CONF_PATTERN.search(line)
            instance_ids.add(match.group(1) if match else fallback_id)
    return instance_ids


def instance_name(instance_id: str) -> str:
    """Strip the config suffix from ``instance_id`` for use as a label value."""

    return instance_id.replace(CONF_SUFFIX, "", 1).strip()
