"""The store handle: one local replica of the shared data set.

``Store`` wires the pieces together for one instance:

- a ``GitRepository`` working copy (initialised on first use),
- a ``MutationLog`` that turns each operation into one commit,
- a ``SyncEngine`` / ``SyncScheduler`` pair that replicates commits
  through the shared remote.

Usage:
    from gitstore import Store
    from gitstore.storage.models import ROOT_ID

    with Store.open("data/laptop", remote_url="/srv/git/shared.git",
                    instance="laptop") as store:
        note_id = store.write("note", {"text": "hello"}, tags={"inbox"})
        plan = store.tree("plan")
        step = plan.add_child(ROOT_ID, "first step")
        store.flush()
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from gitstore.config_loader import load_config
from gitstore.config_schema import StoreConfig, SyncConfig, UnifiedConfig
from gitstore.core.git import GitRepository
from gitstore.errors import GitstoreError, NotFound
from gitstore.logger import setup_logging
from gitstore.storage.mapper import (
    GITATTRIBUTES,
    GITATTRIBUTES_PATH,
    StorageMapper,
    validate_name,
)
from gitstore.storage.models import (
    ROOT_ID,
    Clock,
    IdGenerator,
    OperationDescriptor,
    Record,
    RecordFilter,
    TreeNode,
    as_tag_set,
    new_id,
    utc_now,
)
from gitstore.storage.mutations import MutationLog, NodeFn, RecordFn
from gitstore.storage.query import (
    children_index,
    iter_records,
    load_tree,
    visit,
    walk_tree,
)
from gitstore.sync.engine import SyncEngine
from gitstore.sync.models import SyncReport, SyncStatus
from gitstore.sync.resolver import EntityConflictResolver
from gitstore.sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

_INITIAL_MESSAGE = "Initialize gitstore repository\n"


class Store:
    """A local replica bound to one working copy and one remote.

    Args:
        config: Validated configuration.
        clock: Source of entity timestamps.
        id_generator: Source of new entity ids.
        sleep: Backoff sleep used by the sync engine.
        start: Start the background sync worker (``auto`` mode only).
    """

    def __init__(
        self,
        config: UnifiedConfig,
        *,
        clock: Clock = utc_now,
        id_generator: IdGenerator = new_id,
        sleep: Callable[[float], None] = time.sleep,
        start: bool = True,
    ) -> None:
        self.config = config
        cfg = config.store
        self.instance = cfg.instance
        self.mapper = StorageMapper()
        self.repo = GitRepository(
            Path(cfg.path), git_binary=cfg.git_binary, timeout=config.sync.git_timeout
        )
        self._lock = threading.RLock()
        self._closed = False

        self._initialize()

        self.engine = SyncEngine(
            self.repo,
            self._lock,
            cfg,
            config.sync,
            resolver=EntityConflictResolver(self.mapper),
            sleep=sleep,
        )
        self.scheduler = SyncScheduler(
            self.engine, mode=config.sync.mode, instance=cfg.instance
        )
        self._log = MutationLog(
            self.repo,
            self.mapper,
            self._lock,
            clock,
            id_generator,
            instance=cfg.instance,
            on_commit=self.scheduler.request,
        )
        if start and config.sync.mode == "auto":
            self.scheduler.start()
        logger.info(
            "Opened store '%s' at %s (mode=%s)",
            cfg.instance,
            cfg.path,
            config.sync.mode,
        )

    @classmethod
    def open(
        cls,
        config: UnifiedConfig | str | Path | None = None,
        *,
        remote_url: str | None = None,
        instance: str | None = None,
        mode: str | None = None,
        configure_logging: bool = False,
        **kwargs: Any,
    ) -> Store:
        """Open (or create) a store.

        Args:
            config: A ``UnifiedConfig``, a working copy path, or ``None`` to
                use the discovered configuration files.
            remote_url: Override ``store.remote_url``.
            instance: Override ``store.instance``.
            mode: Override ``sync.mode``.
            configure_logging: Apply the ``logging`` section through
                ``setup_logging()`` before opening.
            **kwargs: Passed to ``Store()`` (``clock``, ``id_generator``,
                ``sleep``, ``start``).
        """
        if isinstance(config, UnifiedConfig):
            base = config
        elif config is None:
            base = load_config()
        else:
            base = UnifiedConfig(store=StoreConfig(path=str(config)))

        store_updates = {
            key: value
            for key, value in (("remote_url", remote_url), ("instance", instance))
            if value is not None
        }
        sync_updates = {"mode": mode} if mode is not None else {}
        if store_updates or sync_updates:
            base = UnifiedConfig(
                store=StoreConfig(**{**base.store.model_dump(), **store_updates}),
                sync=SyncConfig(**{**base.sync.model_dump(), **sync_updates}),
                logging=base.logging,
            )
        if configure_logging:
            setup_logging(
                log_file=base.logging.file,
                fmt=base.logging.format,
                level=base.logging.level,
            )
        return cls(base, **kwargs)

    def _initialize(self) -> None:
        cfg = self.config.store
        if not self.repo.is_repository():
            self.repo.init(cfg.branch, cfg.instance, cfg.email)
        if self.repo.head() is None:
            self.repo.write_file(GITATTRIBUTES_PATH, GITATTRIBUTES.encode("utf-8"))
            self.repo.stage([GITATTRIBUTES_PATH])
            self.repo.commit(_INITIAL_MESSAGE)
            logger.debug("Created initial commit for '%s'", cfg.instance)
        if cfg.remote_url:
            self.repo.ensure_remote(cfg.remote_name, cfg.remote_url)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop the sync worker.  Unsynced commits stay in the working copy."""
        if self._closed:
            return
        self.scheduler.stop()
        self._closed = True
        logger.info("Closed store '%s'", self.instance)

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise GitstoreError(f"store '{self.instance}' is closed")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def write(
        self,
        record_type: str,
        content: Any = None,
        tags: Iterable[str] | None = None,
    ) -> str:
        """Store a new record and return its id."""
        self._check_open()
        return self._log.write(record_type, content, tags).id

    def get(self, record_id: str) -> Record:
        self._check_open()
        return self._log.get(record_id)

    def records(
        self,
        record_type: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> Iterator[Record]:
        """Lazily iterate records matching *record_type* and *tags*.

        The snapshot is fixed when this method is called, not when the
        iterator is first advanced.
        """
        self._check_open()
        record_filter = RecordFilter(type=record_type, tags=as_tag_set(tags))
        return iter_records(self.repo, self.mapper, self.repo.head(), record_filter)

    def each(
        self,
        visitor: Callable[[Record], None],
        record_type: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> None:
        """Call *visitor* for each matching record.

        Raises:
            CallerAborted: If *visitor* raises anything but ``StopVisit``.
        """
        visit(self.records(record_type, tags), visitor)

    def alter(self, record_id: str, fn: RecordFn) -> str:
        """Replace a record with ``fn(record)``; return the new id."""
        self._check_open()
        return self._log.alter(record_id, fn).id

    def delete(self, record_id: str) -> None:
        self._check_open()
        self._log.delete(record_id)

    # ------------------------------------------------------------------
    # Trees
    # ------------------------------------------------------------------

    def tree(self, name: str) -> TreeHandle:
        """Return a handle on the tree called *name* (created lazily)."""
        self._check_open()
        return TreeHandle(self, validate_name(name, "tree name"))

    # ------------------------------------------------------------------
    # Sync and diagnostics
    # ------------------------------------------------------------------

    def flush(self, timeout: float | None = None) -> SyncReport:
        """Synchronise now and return the report.

        *timeout* bounds the wait for a background cycle already in flight.

        Raises:
            SyncFailed: If the remote is unreachable, retries run out, or
                the wait for the in-flight cycle times out.
        """
        self._check_open()
        return self.scheduler.flush(timeout)

    def status(self) -> SyncStatus:
        return self.scheduler.status()

    def history(self, limit: int = 20) -> list[OperationDescriptor]:
        self._check_open()
        return self._log.history(limit)


class TreeHandle:
    """Operations on one named tree of a ``Store``."""

    def __init__(self, store: Store, name: str) -> None:
        self.store = store
        self.name = name

    def __repr__(self) -> str:
        return f"TreeHandle({self.name!r})"

    def nodes(self) -> list[TreeNode]:
        """All nodes of the tree at ``HEAD``, including orphans."""
        store = self.store
        store._check_open()
        return load_tree(store.repo, store.mapper, store.repo.head(), self.name)

    def walk(self, visitor: Callable[[TreeNode, int], None]) -> None:
        """Depth-first pre-order traversal; see ``walk_tree``."""
        walk_tree(self.nodes(), visitor)

    def get(self, node_id: str) -> TreeNode:
        self.store._check_open()
        return self.store._log.get_node(self.name, node_id)

    def children(self, parent_id: str = ROOT_ID) -> list[TreeNode]:
        """Direct children of *parent_id* in sibling order.

        Raises:
            NotFound: If *parent_id* is neither the root nor a node.
        """
        nodes = self.nodes()
        if parent_id != ROOT_ID and not any(n.id == parent_id for n in nodes):
            raise NotFound("node", parent_id)
        return children_index(nodes).get(parent_id, [])

    def add_child(self, parent_id: str, label: str) -> str:
        """Create a node under *parent_id* and return its id."""
        self.store._check_open()
        return self.store._log.add_child(self.name, parent_id, label).id

    def alter_node(self, node_id: str, fn: NodeFn) -> TreeNode:
        self.store._check_open()
        return self.store._log.alter_node(self.name, node_id, fn)

    def delete_node(self, node_id: str) -> None:
        self.store._check_open()
        self.store._log.delete_node(self.name, node_id)
