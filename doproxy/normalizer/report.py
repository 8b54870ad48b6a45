# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Diagnostic counters emitted by the normalization engine.

The report is observational only: phases increment counters as they rewrite
the transcript, and callers may log it. Nothing reads it back to decide how
to normalize.
"""

from dataclasses import asdict, dataclass
from typing import Dict

# Counters that describe the transcript rather than a rewrite.
_SIZE_FIELDS = ("input_messages", "output_messages")


@dataclass
class NormalizationReport:
    """Execution stats for one normalization call."""

    input_messages: int = 0
    output_messages: int = 0
    skipped_messages: int = 0
    relocated_system: int = 0
    dropped_invocations: int = 0
    synthesized_results: int = 0
    orphan_results: int = 0
    merged_turns: int = 0
    synthetic_turns: int = 0
    demoted_results: int = 0
    content_rewrites: int = 0
    reordered_results: int = 0

    @property
    def rewrites(self) -> int:
        """Total number of rewrite events across all phases."""
        return sum(
            value for name, value in asdict(self).items() if name not in _SIZE_FIELDS
        )

    @property
    def changed(self) -> bool:
        """True when any phase rewrote the transcript."""
        return self.rewrites > 0 or self.input_messages != self.output_messages

    def as_dict(self) -> Dict[str, int]:
        """Plain dict of all counters, for structured logging."""
        return asdict(self)
