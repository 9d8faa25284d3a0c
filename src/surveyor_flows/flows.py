"""FlowStore — cache of synced flow definitions.

The device downloads definitions while online and executes them offline.
The store keeps the raw JSON of every revision it has seen, keyed by
``(flow_uuid, revision)``, and validates each one through
:func:`surveyor_flows.loader.load_definition` before accepting it.  A run
always executes the revision it was started with, so old revisions stay
cached as long as the store lives.

Usage::

    flows = FlowStore("/data/flows")    # directory of *.json / *.yaml files
    flows.load()

    flow = flows.get("f6e5...")         # latest revision
    pinned = flows.get("f6e5...", 3)    # exact revision
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from surveyor_flows.errors import FlowNotFoundError, UnsupportedVersionError
from surveyor_flows.loader import load_definition, raw_identity
from surveyor_flows.models.flow import FlowDefinition

logger = logging.getLogger(__name__)

_DEFINITION_SUFFIXES = {".json", ".yaml", ".yml"}


def load_document(path: Path | str) -> Any:
    """Load a single JSON or YAML file and return the parsed contents."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing definition file: {path}")
    with path.open("r", encoding="utf-8") as f:
        if path.suffix == ".json":
            return json.load(f)
        return yaml.safe_load(f)


class FlowStore:
    """Validated flow definitions with lookup by uuid and revision.

    Args:
        flow_dir: optional directory scanned by :meth:`load`.  Each file
            holds one definition or a list of definitions.
    """

    def __init__(self, flow_dir: str | Path | None = None) -> None:
        self._base = Path(flow_dir) if flow_dir is not None else None
        self._definitions: dict[tuple[str, int], FlowDefinition] = {}
        self._raw: dict[tuple[str, int], dict] = {}
        # Flows the version gate refused, kept so lookups can say why
        self._rejected: dict[str, UnsupportedVersionError] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Parse every definition file under the flow directory.

        A definition for an unsupported spec version is skipped with a
        warning; any other invalid definition aborts the load.
        """
        if self._base is None:
            return
        if not self._base.is_dir():
            raise FileNotFoundError(f"Missing flow directory: {self._base}")

        for path in sorted(self._base.iterdir()):
            if path.suffix not in _DEFINITION_SUFFIXES:
                continue
            raw = load_document(path)
            for item in raw if isinstance(raw, list) else [raw]:
                try:
                    self.add(item)
                except UnsupportedVersionError as exc:
                    logger.warning("Skipping %s: %s", path.name, exc)

        logger.info(
            "FlowStore loaded: %d definitions (%d flows) from %s",
            len(self._definitions),
            len(self.flow_uuids()),
            self._base,
        )

    def add(self, raw: Mapping[str, Any]) -> FlowDefinition:
        """Validate and cache a raw definition.

        Re-adding the same ``(uuid, revision)`` replaces the cached copy.

        Raises:
            UnsupportedVersionError, InvalidDefinitionError,
            UnsupportedFlowTypeError: see :func:`load_definition`.
        """
        try:
            definition = load_definition(raw)
        except UnsupportedVersionError as exc:
            flow_uuid = raw_identity(raw)[0] if isinstance(raw, Mapping) else None
            if flow_uuid:
                self._rejected[flow_uuid] = exc
            raise
        key = (definition.uuid, definition.revision)
        self._definitions[key] = definition
        self._raw[key] = dict(raw)
        logger.debug(
            "Cached flow %s revision %d (%s)",
            definition.uuid, definition.revision, definition.name,
        )
        return definition

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, flow_uuid: str, revision: int | None = None) -> FlowDefinition:
        """Return a cached definition; the latest revision if none is given.

        Raises:
            UnsupportedVersionError: if the flow was only ever offered in
                an unsupported spec version.
            FlowNotFoundError: if nothing matching is cached.
        """
        if revision is not None:
            definition = self._definitions.get((flow_uuid, revision))
            if definition is None:
                raise FlowNotFoundError(
                    f"Flow {flow_uuid} revision {revision} is not cached"
                )
            return definition

        revisions = self.revisions(flow_uuid)
        if not revisions:
            rejected = self._rejected.get(flow_uuid)
            if rejected is not None:
                raise UnsupportedVersionError(rejected.spec_version, str(rejected))
            raise FlowNotFoundError(f"Flow {flow_uuid} is not cached")
        return self._definitions[(flow_uuid, revisions[-1])]

    def get_raw(self, flow_uuid: str, revision: int) -> dict:
        """The raw definition exactly as it was added."""
        try:
            return self._raw[(flow_uuid, revision)]
        except KeyError:
            raise FlowNotFoundError(
                f"Flow {flow_uuid} revision {revision} is not cached"
            ) from None

    def has(self, flow_uuid: str, revision: int | None = None) -> bool:
        if revision is None:
            return bool(self.revisions(flow_uuid))
        return (flow_uuid, revision) in self._definitions

    def revisions(self, flow_uuid: str) -> list[int]:
        """Cached revisions of one flow, ascending."""
        return sorted(rev for uuid, rev in self._definitions if uuid == flow_uuid)

    def flow_uuids(self) -> list[str]:
        return sorted({uuid for uuid, _ in self._definitions})

    def latest(self) -> list[FlowDefinition]:
        """The latest cached revision of every flow, ordered by name."""
        flows = [self.get(uuid) for uuid in self.flow_uuids()]
        return sorted(flows, key=lambda f: (f.name.casefold(), f.uuid))

