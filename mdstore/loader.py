# SPDX-License-Identifier: MIT
"""Parallel document loading with bounded workers."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Sequence, Union

from .document import Document, read_document

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


def load_documents(
    paths: Sequence[Union[str, Path]],
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> List[Document]:
    """
    Read and parse every path, returning documents in input order.

    Results are returned only once every parse has finished. Header
    problems are recorded on each Document, not raised.

    Raises:
        ValueError: If max_workers is less than 1
        OSError: If a file cannot be read
    """
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    if not paths:
        return []

    workers = min(max_workers, len(paths))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        documents = list(executor.map(read_document, paths))

    logger.debug("loaded %d document(s) with %d worker(s)", len(documents), workers)
    return documents
