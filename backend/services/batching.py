"""
Exécuteur par lots.

Découpe une liste de travaux en lots consécutifs de `batch_size`,
exécute chaque lot en concurrence et attend la fin complète du lot
avant de lancer le suivant : au plus `batch_size` appels externes
simultanés. Un échec individuel n'interrompt jamais le lot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterator, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Écritures concurrentes par lot
WRITE_BATCH_SIZE = 20
# Valeurs max par prédicat "is one of" (requêtes par id / barcode)
ID_QUERY_BATCH_SIZE = 60


@dataclass
class BatchOutcome(Generic[T, R]):
    item: T
    success: bool
    value: R | None = None
    error: Exception | None = None
    context: dict[str, Any] = field(default_factory=dict)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def run_batched(
    items: Sequence[T],
    op: Callable[[T], Awaitable[R]],
    batch_size: int = WRITE_BATCH_SIZE,
    *,
    describe: Callable[[T], dict[str, Any]] | None = None,
) -> list[BatchOutcome[T, R]]:
    """
    Retourne un BatchOutcome par élément, dans l'ordre d'entrée.

    Les exceptions levées par `op` sont capturées dans l'outcome
    (success=False) ; seule une annulation remonte.
    """
    outcomes: list[BatchOutcome[T, R]] = []
    for index, chunk in enumerate(chunked(items, batch_size)):
        logger.debug("Running batch %d (%d items)", index + 1, len(chunk))
        results = await asyncio.gather(*(op(item) for item in chunk), return_exceptions=True)

        for offset, (item, result) in enumerate(zip(chunk, results)):
            if isinstance(result, Exception):
                context = {"index": index * batch_size + offset}
                if describe is not None:
                    context.update(describe(item))
                outcomes.append(BatchOutcome(item=item, success=False, error=result, context=context))
            elif isinstance(result, BaseException):
                # CancelledError & co : on ne les avale pas
                raise result
            else:
                outcomes.append(BatchOutcome(item=item, success=True, value=result))

    return outcomes


def failures(outcomes: Sequence[BatchOutcome[T, R]]) -> list[BatchOutcome[T, R]]:
    return [o for o in outcomes if not o.success]


def successes(outcomes: Sequence[BatchOutcome[T, R]]) -> list[R]:
    return [o.value for o in outcomes if o.success]
