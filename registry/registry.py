from __future__ import annotations

import copy
import itertools
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from registry.properties import ConfigKind, ConfigProperty, coerce, payload_matches
from registry.sources import SourceLoader
from shared.errors import SourceParseError, TypeMismatchError
from shared.log import get_logger

logger = get_logger(__name__)


class _Bucket:
    """
    Name -> properties for one kind.

    Each slot is an immutable tuple ordered by descending priority, replaced
    whole under the lock. Readers take the current tuple without locking.
    """

    def __init__(self, kind: ConfigKind) -> None:
        self.kind = kind
        self._slots: Dict[str, Tuple[ConfigProperty, ...]] = {}
        self._lock = threading.Lock()

    def insert(self, prop: ConfigProperty) -> None:
        with self._lock:
            current = self._slots.get(prop.name, ())
            # after every entry of equal or higher priority, so equal priorities keep first-in order
            index = len(current)
            for i, existing in enumerate(current):
                if existing.priority < prop.priority:
                    index = i
                    break
            self._slots[prop.name] = current[:index] + (prop,) + current[index:]

    def first(self, name: str) -> Optional[ConfigProperty]:
        values = self._slots.get(name)
        if not values:
            return None
        return values[0]

    def history(self, name: str) -> Tuple[ConfigProperty, ...]:
        return self._slots.get(name, ())

    def names(self) -> List[str]:
        return sorted(self._slots)

    def __len__(self) -> int:
        return len(self._slots)


class ConfigRegistry:
    """
    Typed configuration registry.

    Properties are partitioned into one bucket per ConfigKind. A lookup
    returns the highest-priority value stored for a name in the bucket of the
    accessor's kind, or None when the name was never seen there.

    The registry is built once (``load``) and then only read. Loads and reads
    may happen from several threads.

    Args:
        declared: names whose raw values must be coerced to a fixed kind.
            Matched case-insensitively. Anything not declared gets the kind
            its parser produced.
    """

    def __init__(self, declared: Optional[Mapping[str, ConfigKind]] = None) -> None:
        self.declared: Dict[str, ConfigKind] = dict(declared or {})
        # env keys arrive lower-cased; declared camelCase names must still match
        self._canonical: Dict[str, str] = {name.lower(): name for name in self.declared}
        # lower-cased name -> (name, kind) of the first typed value stored for it
        self._seen: Dict[str, Tuple[str, ConfigKind]] = {}
        self._seen_lock = threading.Lock()
        self._buckets: Dict[ConfigKind, _Bucket] = {kind: _Bucket(kind) for kind in ConfigKind}
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    @classmethod
    def from_sources(cls, sources: Iterable[SourceLoader],
                     declared: Optional[Mapping[str, ConfigKind]] = None) -> ConfigRegistry:
        registry = cls(declared=declared)
        registry.load(sources)
        return registry

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    # ========================================
    #           BUILDING
    # ========================================

    def load(self, sources: Iterable[SourceLoader]) -> int:
        """
        Read every source in order and insert its values.

        A source that fails to parse is skipped; the others still load.
        Returns the number of properties inserted.
        """
        inserted = 0
        for source in sources:
            try:
                bag = source.read()
            except SourceParseError as e:
                logger.warning(f"Skipping source: {e.detail}", extra={"source": source.name})
                continue
            inserted += self.load_bag(bag, priority=source.priority, source=source.name)
            logger.debug(f"Loaded {len(bag)} keys (priority {source.priority})", extra={"source": source.name})
        return inserted

    def load_bag(self, bag: Mapping[str, Any], priority: int, source: str = "") -> int:
        """Insert one raw key/value bag at ``priority``. Values that cannot be coerced are skipped."""
        inserted = 0
        for name, raw in bag.items():
            name, stored_kind = self._resolve(name)
            if raw is None:
                kind = self.declared.get(name) or stored_kind or ConfigKind.OBJECT
                self.insert(ConfigProperty(self._next_id(), name, priority, kind, None,
                                           nullable=True, source=source))
                inserted += 1
                continue
            try:
                kind, value = self._coerce(name, raw, stored_kind)
            except (ValueError, TypeError, OverflowError) as e:
                logger.warning(f"Ignoring {name!r}: {e}", extra={"source": source})
                continue
            self.insert(ConfigProperty(self._next_id(), name, priority, kind, value, source=source))
            inserted += 1
        return inserted

    def _resolve(self, name: str) -> Tuple[str, Optional[ConfigKind]]:
        """
        Spelling and kind a raw key should be stored under.

        Declared names win; otherwise a key matching an already stored name
        (ignoring case) takes that name and its kind, so ``TEST_MAXCONN=9``
        lands on a file-defined ``maxConn: 5`` as a number.
        """
        lowered = name.lower()
        if lowered in self._canonical:
            return self._canonical[lowered], None
        seen = self._seen.get(lowered)
        if seen is None:
            return name, None
        return seen

    def _coerce(self, name: str, raw: Any, stored_kind: Optional[ConfigKind]) -> Tuple[ConfigKind, Any]:
        declared = self.declared.get(name)
        if declared is not None or stored_kind is None or not isinstance(raw, str):
            return coerce(raw, declared)
        # untyped text (env vars) takes the kind of what it overrides
        try:
            return coerce(raw, stored_kind)
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug(f"{name!r} is not a {stored_kind.value} ({e}), storing as text")
            return coerce(raw)

    def insert(self, prop: ConfigProperty) -> None:
        """Store ``prop`` in its kind's bucket. Earlier entries for the name are kept."""
        self._buckets[prop.kind].insert(prop)
        if prop.value is not None:
            with self._seen_lock:
                self._seen.setdefault(prop.name.lower(), (prop.name, prop.kind))

    # ========================================
    #           LOOKUP
    # ========================================

    def _bucket(self, kind: Any) -> _Bucket:
        if isinstance(kind, ConfigKind):
            return self._buckets[kind]
        if isinstance(kind, str):
            return self._buckets[ConfigKind.from_string(kind)]
        raise TypeMismatchError(f"{kind!r} is not a ConfigKind")

    def lookup(self, kind: ConfigKind | str, name: str) -> Optional[ConfigProperty]:
        """Highest-priority property for ``name`` in the ``kind`` bucket."""
        return self._bucket(kind).first(name)

    def get(self, kind: ConfigKind | str, name: str) -> Any:
        bucket = self._bucket(kind)
        prop = bucket.first(name)
        if prop is None or prop.value is None:
            return None
        if prop.kind is not bucket.kind or not payload_matches(bucket.kind, prop.value):
            raise TypeMismatchError(
                f"{name}: {prop.kind.value} property stored in the {bucket.kind.value} bucket"
            )
        if bucket.kind in (ConfigKind.OBJECT, ConfigKind.SEQUENCE):
            # the stored payload belongs to the property
            return copy.deepcopy(prop.value)
        return prop.value

    def get_boolean(self, name: str) -> Optional[bool]:
        return self.get(ConfigKind.BOOLEAN, name)

    def get_string(self, name: str) -> Optional[str]:
        return self.get(ConfigKind.STRING, name)

    def get_timestamp(self, name: str) -> Optional[datetime]:
        return self.get(ConfigKind.TIMESTAMP, name)

    def get_duration(self, name: str) -> Optional[timedelta]:
        return self.get(ConfigKind.DURATION, name)

    def get_number(self, name: str) -> Any:
        return self.get(ConfigKind.NUMBER, name)

    def get_object(self, name: str) -> Optional[Mapping[str, Any]]:
        return self.get(ConfigKind.OBJECT, name)

    def get_sequence(self, name: str) -> Optional[List[Any]]:
        return self.get(ConfigKind.SEQUENCE, name)

    def history(self, kind: ConfigKind | str, name: str) -> Tuple[ConfigProperty, ...]:
        """Every property stored for ``name``, most authoritative first."""
        return self._bucket(kind).history(name)

    def names(self, kind: ConfigKind | str) -> List[str]:
        return self._bucket(kind).names()

    def properties(self) -> Iterator[ConfigProperty]:
        """The winning property of every (kind, name) slot."""
        for kind in ConfigKind:
            bucket = self._buckets[kind]
            for name in bucket.names():
                prop = bucket.first(name)
                if prop is not None:
                    yield prop

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def __repr__(self) -> str:
        counts = ", ".join(f"{kind.value}={len(self._buckets[kind])}" for kind in ConfigKind)
        return f"ConfigRegistry({counts})"
