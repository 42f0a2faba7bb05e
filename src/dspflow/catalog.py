"""Block catalog: static descriptors for every block type a graph may use."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple


class SignalType(str, Enum):
    """Numeric shape of the buffer travelling along an edge."""

    REAL = "real"
    COMPLEX = "complex"


class CatalogError(ValueError):
    """Raised when a block descriptor cannot be registered."""


@dataclass(frozen=True)
class BlockSignals:
    """Declared input/output signal types; ``None`` marks a missing side."""

    input: SignalType | None
    output: SignalType | None


@dataclass(frozen=True)
class ParamField:
    """Editor hint for one block parameter."""

    name: str
    label: str
    kind: str = "number"
    default: Any = None
    minimum: float | None = None
    maximum: float | None = None
    step: float | None = None
    options: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class BlockContext:
    """Arguments handed to a block's ``process`` function each cycle."""

    inputs: Sequence[Any]
    params: Mapping[str, Any]
    state: Any
    sample_rate: int
    buffer_size: int
    node_id: str


ProcessFn = Callable[[BlockContext], Any]
ValidateFn = Callable[[Mapping[str, Any]], List[str]]


@dataclass(frozen=True)
class BlockDescriptor:
    """Static contract of a block type."""

    id: str
    name: str
    icon: str
    group: str
    signals: BlockSignals
    process: ProcessFn
    description: str = ""
    group_order: int = 0
    default_params: Mapping[str, Any] = field(default_factory=dict)
    param_fields: Tuple[ParamField, ...] = ()
    validate: ValidateFn | None = None
    state_factory: Callable[[], Any] | None = None
    visualization_type: str | None = None

    @property
    def is_generator(self) -> bool:
        return self.signals.input is None

    @property
    def is_sink(self) -> bool:
        return self.signals.output is None

    def defaults(self) -> Dict[str, Any]:
        return dict(self.default_params)


_REQUIRED_FIELDS = ("id", "name", "icon", "group", "signals", "process")
_UNKNOWN_SIGNALS = BlockSignals(SignalType.REAL, SignalType.REAL)


def _coerce_signal(value) -> SignalType | None:
    if value is None or isinstance(value, SignalType):
        return value
    return SignalType(str(value).lower())


def descriptor_from_mapping(record: Mapping[str, Any]) -> BlockDescriptor:
    """Build a :class:`BlockDescriptor` from a plain plugin mapping."""

    for name in _REQUIRED_FIELDS:
        if record.get(name) is None:
            raise CatalogError(f"Block '{record.get('id', 'unknown')}' missing required field: {name}")
    signals = record["signals"]
    if isinstance(signals, Mapping):
        signals = BlockSignals(_coerce_signal(signals.get("input")), _coerce_signal(signals.get("output")))
    return BlockDescriptor(
        id=str(record["id"]),
        name=str(record["name"]),
        icon=str(record["icon"]),
        group=str(record["group"]),
        signals=signals,
        process=record["process"],
        description=str(record.get("description") or record["name"]),
        group_order=int(record.get("group_order", record.get("groupOrder", 0)) or 0),
        default_params=dict(record.get("default_params", record.get("defaultParams")) or {}),
        param_fields=tuple(record.get("param_fields", record.get("paramFields")) or ()),
        validate=record.get("validate"),
        state_factory=record.get("state_factory"),
        visualization_type=record.get("visualization_type", record.get("visualizationType")),
    )


@dataclass(frozen=True)
class BlockGroup:
    id: str
    name: str
    order: int


class BlockCatalog:
    """Registry of block descriptors keyed by id and by display name.

    The catalog is mutable until :meth:`freeze` is called; afterwards it is
    read-only and can be shared freely between compilers and engines.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, BlockDescriptor] = {}
        self._by_name: Dict[str, BlockDescriptor] = {}
        self._groups: Dict[str, BlockGroup] = {}
        self._frozen = False

    # --- registration ---

    def register(self, descriptor: BlockDescriptor | Mapping[str, Any]) -> BlockDescriptor:
        if self._frozen:
            label = getattr(descriptor, "name", None) or (
                descriptor.get("name") if isinstance(descriptor, Mapping) else None
            )
            raise CatalogError(f"Catalog is frozen; cannot register block '{label}'")
        if isinstance(descriptor, Mapping):
            descriptor = descriptor_from_mapping(descriptor)
        for name in _REQUIRED_FIELDS:
            if getattr(descriptor, name, None) is None:
                raise CatalogError(f"Block '{descriptor.id or 'unknown'}' missing required field: {name}")
        if not callable(descriptor.process):
            raise CatalogError(f"Block '{descriptor.id}' process handler is not callable")
        if descriptor.name in self._by_name:
            raise CatalogError(f"Block with name '{descriptor.name}' already registered")
        if descriptor.id in self._by_id:
            raise CatalogError(f"Block with id '{descriptor.id}' already registered")
        self._by_id[descriptor.id] = descriptor
        self._by_name[descriptor.name] = descriptor
        return descriptor

    def define_group(self, group_id: str, name: str, order: int) -> None:
        if self._frozen:
            raise CatalogError("Catalog is frozen")
        self._groups[group_id] = BlockGroup(group_id, name, int(order))

    def freeze(self) -> "BlockCatalog":
        self._by_id = MappingProxyType(dict(self._by_id))
        self._by_name = MappingProxyType(dict(self._by_name))
        self._groups = MappingProxyType(dict(self._groups))
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # --- lookup ---

    def get(self, block_id: str) -> BlockDescriptor | None:
        return self._by_id.get(block_id)

    def get_by_name(self, name: str) -> BlockDescriptor | None:
        return self._by_name.get(name)

    def resolve(self, block_type: str) -> BlockDescriptor | None:
        """Look ``block_type`` up by id first, then by display name."""

        return self._by_id.get(block_type) or self._by_name.get(block_type)

    def __contains__(self, block_type: object) -> bool:
        return isinstance(block_type, str) and self.resolve(block_type) is not None

    def __iter__(self):
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def descriptors(self) -> Iterable[BlockDescriptor]:
        return tuple(self._by_id.values())

    # --- per-type views ---

    def signals_for(self, block_type: str) -> BlockSignals:
        """Declared signals, or ``real -> real`` for an unknown type."""

        descriptor = self.resolve(block_type)
        return descriptor.signals if descriptor is not None else _UNKNOWN_SIGNALS

    def is_generator(self, block_type: str) -> bool:
        descriptor = self.resolve(block_type)
        return descriptor.is_generator if descriptor is not None else False

    def is_sink(self, block_type: str) -> bool:
        descriptor = self.resolve(block_type)
        return descriptor.is_sink if descriptor is not None else False

    def default_params(self, block_type: str) -> Dict[str, Any]:
        descriptor = self.resolve(block_type)
        return descriptor.defaults() if descriptor is not None else {}

    def param_fields(self, block_type: str) -> Tuple[ParamField, ...]:
        descriptor = self.resolve(block_type)
        return descriptor.param_fields if descriptor is not None else ()

    def validator(self, block_type: str) -> ValidateFn | None:
        descriptor = self.resolve(block_type)
        return descriptor.validate if descriptor is not None else None

    def processor(self, block_type: str) -> ProcessFn | None:
        descriptor = self.resolve(block_type)
        return descriptor.process if descriptor is not None else None

    def visualization_type(self, block_type: str) -> str | None:
        descriptor = self.resolve(block_type)
        return descriptor.visualization_type if descriptor is not None else None

    def validate_params(self, block_type: str, params: Mapping[str, Any] | None) -> List[str]:
        """Run the block's validator over ``params`` merged onto its defaults."""

        descriptor = self.resolve(block_type)
        if descriptor is None or descriptor.validate is None:
            return []
        merged = descriptor.defaults()
        merged.update(params or {})
        return list(descriptor.validate(merged))

    # --- catalog-wide views ---

    def block_types(self) -> Dict[str, str]:
        return {descriptor.id: descriptor.name for descriptor in self._by_id.values()}

    def signal_config(self) -> Dict[str, BlockSignals]:
        return {descriptor.id: descriptor.signals for descriptor in self._by_id.values()}

    def default_params_map(self) -> Dict[str, Dict[str, Any]]:
        return {descriptor.id: descriptor.defaults() for descriptor in self._by_id.values()}

    def generator_types(self) -> List[str]:
        return [descriptor.id for descriptor in self._by_id.values() if descriptor.is_generator]

    def visualization_types(self) -> List[str]:
        return [descriptor.id for descriptor in self._by_id.values() if descriptor.visualization_type]

    def groups(self) -> List[Dict[str, Any]]:
        """Groups in display order, each with its blocks sorted by ``group_order``."""

        members: Dict[str, List[BlockDescriptor]] = {}
        for descriptor in self._by_id.values():
            members.setdefault(descriptor.group, []).append(descriptor)
        result = []
        for group in sorted(self._groups.values(), key=lambda item: item.order):
            blocks = sorted(members.get(group.id, []), key=lambda item: item.group_order)
            result.append(
                {
                    "id": group.id,
                    "name": group.name,
                    "blocks": [
                        {
                            "id": block.id,
                            "name": block.name,
                            "icon": block.icon,
                            "description": block.description or block.name,
                        }
                        for block in blocks
                    ],
                }
            )
        return result


__all__ = [
    "BlockCatalog",
    "BlockContext",
    "BlockDescriptor",
    "BlockGroup",
    "BlockSignals",
    "CatalogError",
    "ParamField",
    "SignalType",
    "descriptor_from_mapping",
]
