"""Type aliases used throughout multistore."""

from __future__ import annotations

import os  # noqa: TC003
from collections.abc import Callable
from typing import BinaryIO, Union

from multistore._models import ProgressEvent

PathLike = Union[str, "os.PathLike[str]"]  # noqa: UP007
Content = BinaryIO | bytes
ProgressCallback = Callable[[ProgressEvent], None]
# (completed, total_so_far, key)
BatchProgressCallback = Callable[[int, int, str], None]
