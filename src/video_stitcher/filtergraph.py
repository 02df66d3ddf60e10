"""Typed model of an ffmpeg ``-filter_complex`` graph.

Chains are nodes and bracketed stream labels are edges. Builders allocate every
intermediate label through :meth:`FilterGraph.label`, so graphs whose layer
count depends on the request never reuse a label, and the textual form is only
produced at the end by :meth:`FilterGraph.serialize`.
"""

from dataclasses import dataclass, field
from typing import List, Sequence, Set, Tuple, Union

Number = Union[int, float]


def fmt(value: Union[Number, str]) -> str:
    """Render a filter argument; whole floats print without a decimal point."""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def filt(name: str, *args: Union[Number, str], **kwargs: Union[Number, str]) -> str:
    """Format one filter: ``filt("scale", 1920, 1080, flags="bicubic")``.

    Positional arguments come first, then keyword arguments in call order.
    """
    params = [fmt(a) for a in args]
    params.extend(f"{k}={fmt(v)}" for k, v in kwargs.items())
    if not params:
        return name
    return f"{name}={':'.join(params)}"


@dataclass
class FilterChain:
    """Comma-joined filters reading ``inputs`` and writing ``outputs``."""
    inputs: List[str]
    filters: List[str]
    outputs: List[str]

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{','.join(self.filters)}{outs}"


@dataclass
class FilterGraph:
    """Ordered filter chains plus the set of labels already allocated."""
    chains: List[FilterChain] = field(default_factory=list)
    _allocated: Set[str] = field(default_factory=set)
    _produced: Set[str] = field(default_factory=set)

    def label(self, name: str) -> str:
        """Allocate a unique label based on ``name`` (``name``, ``name_1``, ...)."""
        candidate = name
        counter = 1
        while candidate in self._allocated:
            candidate = f"{name}_{counter}"
            counter += 1
        self._allocated.add(candidate)
        return candidate

    def add(
        self,
        inputs: Sequence[str],
        filters: Sequence[str],
        outputs: Sequence[str],
    ) -> List[str]:
        """Append a chain and return its output labels.

        Raises:
            ValueError: If an output label was already produced by another chain
                or the chain has no filters.
        """
        if not filters:
            raise ValueError("filter chain needs at least one filter")
        for label in outputs:
            if label in self._produced:
                raise ValueError(f"duplicate output label: [{label}]")
        self._produced.update(outputs)
        self._allocated.update(outputs)
        self.chains.append(FilterChain(list(inputs), list(filters), list(outputs)))
        return list(outputs)

    def unconsumed(self) -> List[str]:
        """Labels produced by some chain but never read by another, in order."""
        consumed = {label for chain in self.chains for label in chain.inputs}
        return [
            label
            for chain in self.chains
            for label in chain.outputs
            if label not in consumed
        ]

    def serialize(self) -> str:
        return ";".join(chain.render() for chain in self.chains)

    def topology(self) -> List[Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]]]:
        """Structure of the graph with every filter argument stripped.

        Two graphs with equal topology have the same layers wired in the same
        order and differ only in numeric parameters.
        """
        return [
            (
                tuple(chain.inputs),
                tuple(f.split("=", 1)[0] for f in chain.filters),
                tuple(chain.outputs),
            )
            for chain in self.chains
        ]

    def __str__(self) -> str:
        return self.serialize()

