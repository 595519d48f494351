#!/usr/bin/env python3
"""
Query-complete streaming over an alignment record stream

A producer thread reads the record stream, groups consecutive records by
query id and hands each completed QueryAlignmentSet to the consumer through
a bounded queue. Once `buffer_depth` sets are queued the producer stops
reading, so with buffer_depth=1 it never reads past the first record of
query N+1 until the consumer has taken the set for query N.
"""
import inspect
import logging
import threading
from collections import deque
from typing import Callable, Deque, Iterable, Iterator, Optional, Set

from fastga.exceptions import StreamCancelledError, ValidationError
from fastga.models.alignment import AlignmentRecord, QueryAlignmentSet
from fastga.models.catalog import SequenceCatalog

logger = logging.getLogger("fastga.pipelines.streaming")

# Seconds close() waits for the producer thread to exit
JOIN_TIMEOUT = 5.0


class QueryAlignmentIterator:
    """Bounded, query-complete iterator over a record stream

    Args:
        source: Iterable of AlignmentRecords in query-major order. If it has a
            close() method, cancellation calls it so the driving process stops.
        buffer_depth: Completed sets the producer may queue before blocking
        query_catalog: Resolves query names and lengths; taken from
            source.query_catalog when omitted
    """

    def __init__(self, source: Iterable[AlignmentRecord], buffer_depth: int = 1,
                 query_catalog: Optional[SequenceCatalog] = None):
        if buffer_depth < 1:
            raise ValidationError(f"buffer_depth must be at least 1, got {buffer_depth}")

        self.buffer_depth = buffer_depth
        self.query_catalog = query_catalog or getattr(source, 'query_catalog', None)
        self._source = source
        self._queue: Deque[QueryAlignmentSet] = deque()
        self._cond = threading.Condition()
        self._finished = False
        self._closed = False
        self._error: Optional[BaseException] = None

        # Progress counters
        self.records_read = 0
        self.sets_produced = 0
        self.sets_consumed = 0
        self.producer_waits = 0

        self._thread = threading.Thread(target=self._produce, name="query-stream-producer",
                                        daemon=True)
        self._thread.start()

    # Producer side

    def _make_set(self, query_id: int, records) -> QueryAlignmentSet:
        name = None
        length = None
        if self.query_catalog is not None:
            name = self.query_catalog.name(query_id)
            length = self.query_catalog.length(query_id)
        if name is None:
            name = str(query_id)
        if length is None:
            length = records[0].query_len if records else 0
        return QueryAlignmentSet(query_id=query_id, query_name=name,
                                 query_length=length, records=records)

    def _put(self, query_set: QueryAlignmentSet, wait: bool = True) -> bool:
        """Queue a completed set; returns False if the iterator was closed"""
        with self._cond:
            if self._closed:
                return False
            self._queue.append(query_set)
            self.sets_produced += 1
            self._cond.notify_all()
            if wait and len(self._queue) >= self.buffer_depth:
                self.producer_waits += 1
                while len(self._queue) >= self.buffer_depth and not self._closed:
                    self._cond.wait()
            return not self._closed

    def _produce(self) -> None:
        emitted: Set[int] = set()
        current_id = None
        current = []
        try:
            for record in self._source:
                if self._closed:
                    break
                self.records_read += 1
                if current_id is not None and record.query_id != current_id:
                    if not self._put(self._make_set(current_id, current)):
                        return
                    emitted.add(current_id)
                    current = []
                if record.query_id != current_id and record.query_id in emitted:
                    logger.warning(f"Query {record.query_id} reappeared after its set was "
                                   f"emitted; stream is not query-major")
                current_id = record.query_id
                current.append(record)

            if current_id is not None and not self._closed:
                self._put(self._make_set(current_id, current), wait=False)
        except Exception as e:
            with self._cond:
                if not self._closed:
                    self._error = e
                    logger.debug(f"Producer stopped with {e.__class__.__name__}: {e}")
        finally:
            if self._closed and inspect.isgenerator(self._source):
                self._source.close()
            with self._cond:
                self._finished = True
                self._cond.notify_all()

    # Consumer side

    def __iter__(self) -> Iterator[QueryAlignmentSet]:
        return self

    def __next__(self) -> QueryAlignmentSet:
        with self._cond:
            while not self._queue and not self._finished and not self._closed:
                self._cond.wait()

            if self._closed:
                raise StreamCancelledError("Query stream was closed")
            if self._queue:
                query_set = self._queue.popleft()
                self.sets_consumed += 1
                self._cond.notify_all()
                return query_set
            if self._error is not None:
                error, self._error = self._error, None
                raise error
            raise StopIteration

    def close(self) -> None:
        """Stop the producer and release both sides of the queue

        A consumer blocked in next() gets StreamCancelledError; a producer
        blocked on a full queue returns. The source is closed so a driving
        process is terminated rather than left writing to a dead pipe.
        """
        with self._cond:
            if self._closed:
                return
            was_finished = self._finished
            self._closed = True
            self._queue.clear()
            self._cond.notify_all()

        close_source: Optional[Callable[[], None]] = getattr(self._source, 'close', None)
        # Generators are closed by the producer thread itself
        if close_source is not None and not was_finished and not inspect.isgenerator(self._source):
            close_source()

        if threading.current_thread() is not self._thread:
            self._thread.join(JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("Producer thread did not exit after close()")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exhausted(self) -> bool:
        """True once the source has ended and every queued set was consumed"""
        with self._cond:
            return self._finished and not self._queue

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def iterate(output_stream: Iterable[AlignmentRecord], buffer_depth: int = 1,
            query_catalog: Optional[SequenceCatalog] = None) -> QueryAlignmentIterator:
    """Group an alignment stream into query-complete sets with backpressure"""
    return QueryAlignmentIterator(output_stream, buffer_depth=buffer_depth,
                                  query_catalog=query_catalog)
