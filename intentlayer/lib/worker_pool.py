"""Bounded thread pools for fanning out independent blocking reads.

Platform reads (several file contents, blobs, PR context pieces) are plain
blocking HTTP calls; this module runs a batch of them in parallel and hands
results back in submission order.
"""

from __future__ import annotations

import atexit
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Sequence, Tuple


_POOL_GUARD = threading.Lock()
_POOLS: Dict[Tuple[str, int], ThreadPoolExecutor] = {}


def _pool(pool_name: str, max_workers: int) -> ThreadPoolExecutor:
    key = (str(pool_name or "default"), max(1, int(max_workers)))
    with _POOL_GUARD:
        ex = _POOLS.get(key)
        if ex is None:
            ex = ThreadPoolExecutor(max_workers=key[1], thread_name_prefix=f"intentlayer-{key[0]}")
            _POOLS[key] = ex
        return ex


def shutdown_worker_pools(wait: bool = False) -> None:
    """Shutdown and clear shared thread pools."""
    with _POOL_GUARD:
        pools = list(_POOLS.values())
        _POOLS.clear()
    for ex in pools:
        ex.shutdown(wait=wait, cancel_futures=True)


atexit.register(shutdown_worker_pools)


def _run_inline(funcs: List[Callable[[], Any]], return_exceptions: bool) -> List[Any]:
    out: List[Any] = []
    for fn in funcs:
        try:
            out.append(fn())
        except Exception as exc:
            if not return_exceptions:
                raise
            out.append(exc)
    return out


def run_callables(
    callables: Sequence[Callable[[], Any]],
    *,
    max_workers: int,
    pool_name: str = "default",
    return_exceptions: bool = False,
) -> List[Any]:
    """Run callables in parallel; results keep the input order.

    With ``return_exceptions`` a failing callable yields its exception in
    its slot instead of aborting the batch.
    """
    funcs = list(callables or [])
    if not funcs:
        return []

    worker_count = max(1, min(int(max_workers), len(funcs)))
    if worker_count == 1:
        return _run_inline(funcs, return_exceptions)

    futures = [_pool(pool_name, worker_count).submit(fn) for fn in funcs]
    out: List[Any] = []
    for fut in futures:
        try:
            out.append(fut.result())
        except Exception as exc:
            if not return_exceptions:
                for pending in futures:
                    pending.cancel()
                raise
            out.append(exc)
    return out
