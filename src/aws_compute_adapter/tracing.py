#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import logging
from collections import Counter

_LOGGER = logging.getLogger(__name__)


class APITracer:
    """Counts provider API calls per action.

    One event is recorded for every dispatch, whether it succeeds or fails.
    """

    def __init__(self, *, provider: str = "aws"):
        self.provider = provider
        self._calls: Counter[str] = Counter()

    def trace(self, action: str) -> None:
        self._calls[action] += 1
        _LOGGER.debug(
            "API call %s:%s (#%d)", self.provider, action, self._calls[action]
        )

    def count(self, action: str | None = None) -> int:
        """The number of calls recorded for ``action``, or for all actions."""
        if action is None:
            return self._calls.total()
        return self._calls[action]

    @property
    def calls(self) -> dict[str, int]:
        return dict(self._calls)

    def reset(self) -> None:
        self._calls.clear()
