from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar
from concurrent.futures import ThreadPoolExecutor
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')  # Type of items to process
R = TypeVar('R')  # Type of result

@dataclass
class TaskOutcome(Generic[T, R]):
    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

def process_in_parallel(
    items: Sequence[T],
    func: Callable[[T], R],
    max_workers: Optional[int] = None
) -> List[TaskOutcome]:
    """
    Apply ``func`` to every item, optionally on a thread pool.

    A failing item never stops the others: its exception is captured in its
    outcome. Outcomes come back in input order regardless of completion order.

    Args:
        items: Items to process
        func: Function applied to each item
        max_workers: Thread count; 1 or less runs in the calling thread

    Returns:
        One TaskOutcome per item, in input order
    """
    if not items:
        return []

    def run(item: Any) -> TaskOutcome:
        try:
            return TaskOutcome(item=item, result=func(item))
        except Exception as e:
            return TaskOutcome(item=item, error=e)

    if not max_workers or max_workers <= 1 or len(items) == 1:
        return [run(item) for item in items]

    workers = min(max_workers, len(items))
    logger.debug(f"Processing {len(items)} items on {workers} threads")
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(run, item) for item in items]
        return [future.result() for future in futures]
