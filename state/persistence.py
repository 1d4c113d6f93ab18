"""
ATLAS PERSISTENCE - Session Snapshots

Persists the user-facing slice of session state (selection, view mode,
active layers, performance mode, viewport) as msgspec JSON under a single key of a
key-value store. History and the visible node count are transient and are
never written.

Any MutableMapping[str, bytes] works as the store: a plain dict in tests,
FileKeyValueStore on disk.
"""
import logging
import re
from pathlib import Path
from typing import Iterator, MutableMapping, Optional, Tuple, Union

import msgspec

from core.ontology import IntelligenceLayer, PerformanceMode, ViewMode
from core.schemas import Entity
from viz.culling import Viewport

logger = logging.getLogger(__name__)


SNAPSHOT_VERSION = 1
STORAGE_KEY = "journey-intelligence-store"


class StateSnapshot(msgspec.Struct, kw_only=True, frozen=True):
    version: int = SNAPSHOT_VERSION
    selected_entity: Optional[Entity] = None
    view_mode: ViewMode = ViewMode.OVERVIEW
    active_layers: Tuple[IntelligenceLayer, ...] = ()
    performance_mode: PerformanceMode = PerformanceMode.AUTO
    performance_override: Optional[PerformanceMode] = None
    viewport: Optional[Viewport] = None             # Last pan/zoom; None keeps the current one


_snapshot_decoder = msgspec.json.Decoder(StateSnapshot)


def encode_snapshot(snapshot: StateSnapshot) -> bytes:
    return msgspec.json.encode(snapshot)


def decode_snapshot(data: bytes) -> StateSnapshot:
    """
    Raises:
        msgspec.DecodeError: Malformed JSON
        msgspec.ValidationError: Wrong shape or unknown enum values
    """
    return _snapshot_decoder.decode(data)


def save_snapshot(
    store: MutableMapping[str, bytes],
    snapshot: StateSnapshot,
    key: str = STORAGE_KEY,
) -> None:
    store[key] = encode_snapshot(snapshot)
    logger.debug(f"Saved session snapshot under {key}")


def load_snapshot(store: MutableMapping[str, bytes], key: str = STORAGE_KEY) -> StateSnapshot:
    """
    Load the snapshot stored under `key`.

    A missing key yields defaults silently; a corrupt or unknown-version
    snapshot yields defaults with a warning.
    """
    try:
        data = store[key]
    except KeyError:
        return StateSnapshot()

    try:
        snapshot = decode_snapshot(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        logger.warning(f"Discarding corrupt session snapshot {key}: {e}")
        return StateSnapshot()

    if snapshot.version != SNAPSHOT_VERSION:
        logger.warning(
            f"Discarding session snapshot {key} with version {snapshot.version} "
            f"(expected {SNAPSHOT_VERSION})"
        )
        return StateSnapshot()

    return snapshot


# =============================================================================
# FILE STORE
# =============================================================================

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileKeyValueStore(MutableMapping[str, bytes]):
    """
    One file per key under a directory.

    Usage:
        store = FileKeyValueStore("~/.journey-atlas")
        save_snapshot(store, snapshot)
    """

    def __init__(self, directory: Union[str, Path], suffix: str = ".json"):
        self.directory = Path(directory).expanduser()
        self.suffix = suffix
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key:
            raise KeyError(key)
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}{self.suffix}"

    def __getitem__(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise KeyError(key)
        return path.read_bytes()

    def __setitem__(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(bytes(value))
        tmp.replace(path)

    def __delitem__(self, key: str) -> None:
        path = self._path(key)
        if not path.exists():
            raise KeyError(key)
        path.unlink()

    def __iter__(self) -> Iterator[str]:
        for path in sorted(self.directory.glob(f"*{self.suffix}")):
            yield path.name[:-len(self.suffix)]

    def __len__(self) -> int:
        return sum(1 for _ in self)
