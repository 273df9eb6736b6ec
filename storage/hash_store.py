"""Hash-addressed JSON file store with per-namespace listings."""
import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Set

logger = logging.getLogger(__name__)


def stable_hash(raw_id: str) -> str:
    """
    Hash an identifier into a fixed-length, filesystem-safe key.

    Args:
        raw_id: Natural identifier (often a URL of arbitrary length)

    Returns:
        40 character SHA-1 hex digest
    """
    return hashlib.sha1(raw_id.encode('utf-8')).hexdigest()


class StoreOutcome(str, Enum):
    """Result of a put."""
    WRITTEN = 'written'
    ALREADY_IDENTICAL = 'already_identical'
    COLLISION_SKIPPED = 'collision_skipped'


@dataclass
class PutResult:
    outcome: StoreOutcome
    key: str
    path: Path


class HashStore:
    """
    Write-once JSON store keyed by the hash of each record's id.

    A record lives at <root>/<namespace>/<hash>.json and must carry its own
    id under the "id" attribute, which is how a hash collision between two
    different ids is told apart from the same record arriving twice.
    """

    LISTING_FILENAME = 'index.html'
    ID_ATTRIBUTE = 'id'

    def __init__(self, root_dir):
        """
        Initialize the store.

        Args:
            root_dir: Directory holding every namespace
        """
        self.root_dir = Path(root_dir)
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._listings: Dict[str, Set[str]] = {}
        logger.info(f"Initialized HashStore at: {self.root_dir}")

    def prepare(self, namespaces: Iterable[str], clean: bool = False,
                listed: Iterable[str] = ()) -> None:
        """
        Create namespace directories and empty listings.

        Args:
            namespaces: Namespaces to create
            clean: Empty the root directory first
            listed: Namespaces that get an index listing file
        """
        if clean and self.root_dir.exists():
            if self.root_dir.resolve() == Path(self.root_dir.anchor).resolve():
                raise ValueError(f"Refusing to empty {self.root_dir}")
            logger.info(f"Emptying output directory {self.root_dir}")
            for child in self.root_dir.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            self._listings.clear()

        self.root_dir.mkdir(parents=True, exist_ok=True)
        for namespace in namespaces:
            (self.root_dir / namespace).mkdir(parents=True, exist_ok=True)
        for namespace in listed:
            (self.root_dir / namespace).mkdir(parents=True, exist_ok=True)
            self.listing_path(namespace).touch(exist_ok=True)

    def path_for(self, namespace: str, raw_id: str) -> Path:
        return self.root_dir / namespace / f"{stable_hash(raw_id)}.json"

    def listing_path(self, namespace: str) -> Path:
        return self.root_dir / namespace / self.LISTING_FILENAME

    def exists(self, raw_id: str, namespace: str) -> bool:
        return self.path_for(namespace, raw_id).exists()

    def get(self, raw_id: str, namespace: str) -> Optional[Dict[str, Any]]:
        """
        Read the record stored under hash(raw_id).

        The returned record may belong to a different id if the hash
        collided; callers compare its "id" attribute.

        Returns:
            Stored record, or None if nothing is stored under that hash
        """
        return read_json_or_none(self.path_for(namespace, raw_id))

    def put(self, raw_id: str, namespace: str, content: Dict[str, Any]) -> PutResult:
        """
        Write content under hash(raw_id) unless something is already there.

        Args:
            raw_id: Natural identifier of the record
            namespace: Directory, relative to the root, to write into
            content: JSON-serialisable record whose "id" equals raw_id

        Returns:
            PutResult with the outcome, the hash key and the record path
        """
        key = stable_hash(raw_id)
        path = self.root_dir / namespace / f"{key}.json"

        with self._lock_for(path):
            existing = read_json_or_none(path)
            if existing is None:
                write_json_atomic(path, content)
                return PutResult(StoreOutcome.WRITTEN, key, path)

            existing_id = existing.get(self.ID_ATTRIBUTE) if isinstance(existing, dict) else None
            if existing_id == raw_id:
                return PutResult(StoreOutcome.ALREADY_IDENTICAL, key, path)

            logger.warning(
                f"Already stored {namespace}:{existing_id} and newly received "
                f"{namespace}:{raw_id} are not the same despite having the "
                f"same hash: {key}",
                extra={'existing_id': existing_id, 'incoming_id': raw_id, 'hash': key}
            )
            return PutResult(StoreOutcome.COLLISION_SKIPPED, key, path)

    def append_to_listing(self, namespace: str, key: str) -> bool:
        """
        Add a key to the namespace's index listing exactly once.

        Returns:
            True if a line was appended, False if the key was already listed
        """
        listing_path = self.listing_path(namespace)
        with self._lock_for(listing_path):
            listed = self._listed_keys(namespace)
            if key in listed:
                return False
            listing_path.parent.mkdir(parents=True, exist_ok=True)
            with open(listing_path, 'a', encoding='utf-8', newline='') as f:
                f.write(self._listing_line(key))
            listed.add(key)
            return True

    def update_json(self, namespace: str, filename: str,
                    update: Callable[[Optional[Any]], Any]) -> None:
        """
        Read-modify-write a non-hashed JSON file in a namespace.

        Args:
            namespace: Directory, relative to the root
            filename: File name within the namespace
            update: Called with the current content (None if absent),
                returns the new content
        """
        path = self.root_dir / namespace / filename
        with self._lock_for(path):
            write_json_atomic(path, update(read_json_or_none(path)))

    def listed_keys(self, namespace: str) -> Set[str]:
        """Keys currently present in the namespace's listing."""
        return set(self._listed_keys(namespace))

    def _listed_keys(self, namespace: str) -> Set[str]:
        if namespace not in self._listings:
            keys = set()
            listing_path = self.listing_path(namespace)
            if listing_path.exists():
                with open(listing_path, 'r', encoding='utf-8', newline='') as f:
                    for line in f:
                        key = self._key_from_listing_line(line)
                        if key:
                            keys.add(key)
            self._listings[namespace] = keys
        return self._listings[namespace]

    @staticmethod
    def _listing_line(key: str) -> str:
        return f'<a href="{key}.json">link</a>\r\n'

    @staticmethod
    def _key_from_listing_line(line: str) -> Optional[str]:
        start = line.find('href="')
        if start == -1:
            return None
        start += len('href="')
        end = line.find('.json"', start)
        if end == -1:
            return None
        return line[start:end]

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock


def read_json_or_none(path: Path) -> Optional[Any]:
    """Read a JSON file, returning None if it does not exist."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def write_json_atomic(path: Path, content: Any) -> None:
    """Write JSON through a temporary file so readers never see a partial record."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix='.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(content, f, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        os.unlink(tmp_path)
        raise
