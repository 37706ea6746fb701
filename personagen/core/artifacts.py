from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TypeVar

from personagen.core.errors import ArtifactNotFound, InvalidInput
from personagen.domain.jobs import JobIdentity

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _identity(document: Any) -> Any:
    return document


def _base_root() -> Path:
    env_root = os.getenv("ARTIFACTS_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "pipeline"


def _check_segment(value: str, label: str) -> str:
    if not value or value in {".", ".."} or "/" in value or "\\" in value:
        raise InvalidInput(f"invalid artifact {label}: {value!r}")
    return value


class ArtifactStore:
    """Flat JSON artifact snapshots laid out as ``{subject}/{day}/{category}/{name}.json``."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = Path(root) if root is not None else _base_root()

    @property
    def root(self) -> Path:
        return self._root

    def identity_root(self, identity: JobIdentity) -> Path:
        return self._root / _check_segment(identity.subject, "subject") / identity.day_label

    def path_for(self, identity: JobIdentity, category: str, name: str) -> Path:
        _check_segment(category, "category")
        _check_segment(name, "name")
        return self.identity_root(identity) / category / f"{name}.json"

    @staticmethod
    def key_for(identity: JobIdentity, category: str, name: str) -> str:
        return f"{identity.subject}/{identity.day_label}/{category}/{name}"

    def exists(self, identity: JobIdentity, category: str, name: str) -> bool:
        return self.path_for(identity, category, name).is_file()

    def read(self, identity: JobIdentity, category: str, name: str) -> Any:
        path = self.path_for(identity, category, name)
        try:
            with path.open("r", encoding="utf-8") as fp:
                return json.load(fp)
        except FileNotFoundError as exc:
            raise ArtifactNotFound(self.key_for(identity, category, name)) from exc

    def write(self, identity: JobIdentity, category: str, name: str, document: Any) -> Path:
        """Replace the artifact atomically; readers never observe a partial file."""

        target = self.path_for(identity, category, name)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(document, ensure_ascii=False, indent=2, default=str)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(payload)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("wrote artifact %s", self.key_for(identity, category, name))
        return target

    def get_or_compute(
        self,
        identity: JobIdentity,
        category: str,
        name: str,
        compute: Callable[[], Any],
        parse: Callable[[Any], T] = _identity,
    ) -> tuple[T, bool]:
        """Return ``(parse(document), computed)``.

        A missing artifact, or one that fails to load or parse, is replaced by
        ``compute()`` and read back before parsing.
        """

        try:
            return parse(self.read(identity, category, name)), False
        except ArtifactNotFound:
            pass
        except ValueError as exc:
            logger.warning("artifact %s is unreadable, recomputing: %s", self.key_for(identity, category, name), exc)
        self.write(identity, category, name, compute())
        return parse(self.read(identity, category, name)), True


_store: ArtifactStore | None = None


def get_artifact_store() -> ArtifactStore:
    global _store
    if _store is None:
        _store = ArtifactStore()
    return _store


def configure_artifact_store(store: ArtifactStore | None) -> None:
    """Install the store used by the pipeline and the read services."""

    global _store
    _store = store
