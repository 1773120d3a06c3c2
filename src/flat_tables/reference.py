"""Reference tables for collection-valued fields.

Each collection field of a model is stored in its own table, managed by a
nested storage engine. Parent rows carry a primary linking key and child
rows carry the parent's key in their foreign linking key column.
"""

from __future__ import annotations

import hashlib
import logging
import typing
import uuid
from dataclasses import dataclass, make_dataclass
from typing import TYPE_CHECKING, Any, Iterator, Sequence

from flat_tables.exceptions import ValidationError
from flat_tables.paths import CollectionPath
from flat_tables.schema import reference_name
from flat_tables.types import LeafTypeDefinition

if TYPE_CHECKING:
    from flat_tables.engine import StorageEngine

log = logging.getLogger(__name__)


def _element_record_type(name: str, leaf: LeafTypeDefinition) -> type:
    """Create the single-column row type used to store leaf elements."""
    tp: Any = leaf.python_type
    if leaf.optional:
        tp = typing.Optional[tp]
    return make_dataclass(name, [("value", tp)])


@dataclass
class ReferenceBinding:
    """A collection field bound to the engine of its reference table."""

    collection: CollectionPath
    engine: StorageEngine
    # Leaf elements are stored wrapped in a single-column record
    leaf_elements: bool = False

    @property
    def path(self) -> str:
        return self.collection.path

    def wrap(self, items: Any) -> list[Any]:
        """Convert collection items to rows of the reference table."""
        record_type = self.engine.model
        if self.leaf_elements:
            return [record_type(value=item) for item in items]
        items = list(items)
        for item in items:
            if not isinstance(item, record_type):
                raise ValidationError(
                    f"Collection '{self.path}' holds {type(item).__name__}, "
                    f"expected {record_type.__name__}"
                )
        return items

    def unwrap(self, records: list[Any]) -> Any:
        """Rebuild the declared container from reference table rows."""
        if self.leaf_elements:
            records = [record.value for record in records]
        return self.collection.type_def.build(records)


class ReferenceTableManager:
    """Owns the reference tables of one storage engine."""

    def __init__(self, owner: StorageEngine) -> None:
        self.owner = owner
        self._bindings: dict[str, ReferenceBinding] = {}

    def bind(self, collection: CollectionPath) -> ReferenceBinding:
        """Create the nested engine for a collection field."""
        binding = self._bindings.get(collection.path)
        if binding is not None:
            return binding

        owner = self.owner
        name = reference_name(owner.name, collection.path)
        element = collection.element
        if isinstance(element, LeafTypeDefinition):
            record_type = _element_record_type(name, element)
            leaf_elements = True
        else:
            record_type = element.python_type
            leaf_elements = False

        engine = type(owner)(
            record_type,
            name=name,
            gate=owner.gate,
            codecs=owner.registry,
            configuration=owner.configuration,
            is_element_table=True,
        )
        binding = ReferenceBinding(collection=collection, engine=engine, leaf_elements=leaf_elements)
        self._bindings[collection.path] = binding
        log.debug("Bound %s.%s to table %s", owner.name, collection.path, engine.table)
        return binding

    def new_key(self, instance: Any) -> str:
        """Return a fresh primary linking key for an instance being inserted."""
        digest = hashlib.sha1()
        digest.update(repr(instance).encode("utf-8", "backslashreplace"))
        digest.update(uuid.uuid4().bytes)
        return digest.hexdigest()

    def add_children(self, parents: Sequence[Any], keys: Sequence[str]) -> int:
        """Insert the collection elements of every parent, linked to its key."""
        total = 0
        for binding in self:
            children: list[Any] = []
            foreign_keys: list[str] = []
            for parent, key in zip(parents, keys):
                items = binding.collection.getter(parent)
                if items is None:
                    continue
                wrapped = binding.wrap(items)
                children.extend(wrapped)
                foreign_keys.extend([key] * len(wrapped))
            if children:
                total += binding.engine.add_linked(children, foreign_keys)
        return total

    def load_children(self, parents: Sequence[Any], keys: Sequence[str | None]) -> None:
        """Populate every collection field of the parents from the reference tables."""
        linked = [key for key in keys if key is not None]
        for binding in self:
            grouped = binding.engine.find_linked(linked) if linked else {}
            for parent, key in zip(parents, keys):
                records = grouped.get(key, []) if key is not None else []
                binding.collection.setter(parent, binding.unwrap(records))

    def delete_children(self, keys: Sequence[str | None]) -> int:
        """Delete the child rows of the given parent keys, recursively."""
        linked = [key for key in keys if key is not None]
        if not linked:
            return 0
        return sum(binding.engine.delete_linked(linked) for binding in self)

    def create_tables(self) -> None:
        for binding in self:
            binding.engine.create_table()

    def delete_all(self) -> None:
        for binding in self:
            binding.engine.delete_all()

    def drop_all(self) -> None:
        for binding in self:
            binding.engine.delete_table()

    def get(self, path: str) -> ReferenceBinding | None:
        return self._bindings.get(path)

    def __bool__(self) -> bool:
        return bool(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[ReferenceBinding]:
        return iter(self._bindings.values())
