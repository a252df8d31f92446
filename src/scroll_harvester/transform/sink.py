from __future__ import annotations

from typing import Optional, Sequence

from scroll_harvester.core.errors import MissingIdError
from scroll_harvester.core.models import DEFAULT_LIMIT, OutputRecord, TimeWindow
from scroll_harvester.sinks.base import OutputSink
from scroll_harvester.state.store import PaginationStateStore
from scroll_harvester.utils.logging import get_logger


class DeduplicatingItemSink:
    """
    Filters translated batches against an entity's ScrollState and forwards
    the survivors to the output sink.

    A record is forwarded at most once per id for the lifetime of the state:
    its id is recorded only after ``output.emit`` has returned, so a batch
    abandoned half-way can be replayed safely.
    """

    def __init__(
        self,
        store: PaginationStateStore,
        output: OutputSink,
        limit: int = DEFAULT_LIMIT,
        time_window: Optional[TimeWindow] = None,
    ):
        """
        Args:
            store: State store shared with the controller.
            output: Durable destination of accepted records.
            limit: Default cap of accepted records per entity.
            time_window: Optional date filter applied to every record.
        """
        self.store = store
        self.output = output
        self.limit = limit
        self.time_window = time_window or TimeWindow()
        self.log = get_logger("scroll_harvester.sink")

    def accept(
        self,
        entity_id: str,
        batch: Sequence[OutputRecord],
        start_position: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> int:
        """
        Deduplicate ``batch`` for ``entity_id`` and emit the new records.

        Args:
            entity_id: Entity the batch belongs to.
            batch: Records in output order.
            start_position: Position preceding the batch; records without a
                position are numbered from here. Defaults to the number of
                ids accepted so far.
            limit: Per-call override of the configured limit.

        Returns:
            Number of records accepted from this batch.

        Raises:
            MissingIdError: If any record lacks an id. Nothing from the batch
                is accepted and the state is left untouched.
        """
        limit = self.limit if limit is None else limit
        state = self.store.get_or_create(entity_id)

        if limit <= 0 or not batch:
            return 0

        for index, record in enumerate(batch):
            if not record.id:
                raise MissingIdError(entity_id, index)

        state.all_duplicates_in_last_batch = False

        window = self.time_window
        all_out_of_window = window.is_set and all(window.is_outside(r.timestamp) for r in batch)

        if start_position is None:
            start_position = len(state.accepted_ids)

        accepted = 0
        duplicates = 0
        out_of_window = 0

        for index, record in enumerate(batch):
            if len(state.accepted_ids) >= limit:
                self.log.info("Reached limit of %s results for %s, stopping", limit, entity_id)
                break

            if window.is_outside(record.timestamp):
                out_of_window += 1
                continue

            if record.id in state.accepted_ids:
                duplicates += 1
                self.log.debug("Duplicate skipped: %s/%s", entity_id, record.id)
                continue

            if record.position is None:
                record.position = start_position + index + 1

            self.output.emit(record)
            state.accepted_ids.add(record.id)
            accepted += 1

        if all_out_of_window and state.accepted_ids:
            self.log.info("Time boundary reached for %s", entity_id)
            state.reached_time_boundary = True

        state.all_duplicates_in_last_batch = accepted == 0

        self.log.info(
            "Batch for %s: input=%d accepted=%d duplicates=%d out_of_window=%d total=%d",
            entity_id,
            len(batch),
            accepted,
            duplicates,
            out_of_window,
            len(state.accepted_ids),
        )
        return accepted
