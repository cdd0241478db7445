"""Fan-out / fan-in helpers for independent network calls."""
from concurrent.futures import ThreadPoolExecutor

MAX_WORKERS = 8


def gather(*calls):
    """Run zero-argument callables in parallel; results keep call order.

    The first failure (in call order) is re-raised once every call finished.
    """
    if not calls:
        return []
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(calls)),
                            thread_name_prefix='fanout') as pool:
        futures = [pool.submit(call) for call in calls]
    return [f.result() for f in futures]


def gather_settled(calls):
    """Like gather() but never raises: returns a list of (ok, value_or_exception)."""
    calls = list(calls)
    if not calls:
        return []
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(calls)),
                            thread_name_prefix='fanout') as pool:
        futures = [pool.submit(call) for call in calls]
    outcomes = []
    for f in futures:
        err = f.exception()
        outcomes.append((False, err) if err is not None else (True, f.result()))
    return outcomes
