"""
Depth-axis slab chunker with ghost-layer (halo) support.

Design goals
------------
* Split a volume into independent units of work along the depth axis so that
  each worker thread only *reads* its own slab plus a thin halo and only
  *writes* private buffers.
* Keep partitioning deterministic: slabs are always yielded in ascending depth
  order, whatever the worker count.
* Expose a simple DAG executor so that pipeline stages can be composed as pure
  functions.

No VTK imports: this module is completely headless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generator, Optional, Tuple


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SlabDescriptor:
    """
    Describes one slab of cube layers and the voxel layers it may read.

    Attributes
    ----------
    slab_id : int
        Monotonically increasing identifier, equal to the slab's merge rank.
    depth : int
        Number of voxel layers of the full volume.
    core : slice
        Cube layers owned by this slab.  Cube layer ``z`` spans voxel layers
        ``z`` and ``z + 1``.
    extended : slice
        Voxel layers readable by the worker: the core's voxel layers plus
        ``halo`` layers on each side, clamped to the volume.
    halo : int
        Halo width in voxel layers.
    is_last : bool
        True for the slab holding the final cube layer.
    """

    slab_id:    int
    depth:      int
    core:       slice
    extended:   slice
    halo:       int
    is_last:    bool

    # ------------------------------------------------------------------
    def __repr__(self) -> str:
        return (
            f"SlabDescriptor(id={self.slab_id}, "
            f"core=[{self.core.start}:{self.core.stop}], "
            f"read=[{self.extended.start}:{self.extended.stop}], "
            f"halo={self.halo})"
        )

    @property
    def layer_count(self) -> int:
        return self.core.stop - self.core.start

    @property
    def core_in_extended(self) -> slice:
        """Position of the core's first voxel layer within the extended block."""
        start = self.core.start - self.extended.start
        return slice(start, start + self.layer_count + 1)


# ---------------------------------------------------------------------------
# SlabChunker
# ---------------------------------------------------------------------------

class SlabChunker:
    """
    Enumerate depth slabs of cube layers with optional ghost layers.

    Parameters
    ----------
    depth : int
        Number of voxel layers (must be >= 2 for at least one cube layer).
    slab_depth : int
        Desired number of cube layers per slab.  The final slab may be smaller.
    halo : int
        Extra voxel layers readable on each side of a slab.  Central
        differences at the slab faces need ``halo=1``.
    """

    def __init__(self, depth: int, slab_depth: int = 32, halo: int = 1) -> None:
        if depth < 2:
            raise ValueError(f"depth must be >= 2, got {depth}")
        if slab_depth < 1:
            raise ValueError(f"slab_depth must be >= 1, got {slab_depth}")
        if halo < 0:
            raise ValueError(f"halo must be non-negative, got {halo}")

        self.depth      = int(depth)
        self.slab_depth = int(slab_depth)
        self.halo       = int(halo)

        self._cube_layers = self.depth - 1
        self._starts      = list(range(0, self._cube_layers, self.slab_depth))

    # ------------------------------------------------------------------
    @property
    def num_slabs(self) -> int:
        return len(self._starts)

    def __len__(self) -> int:
        return self.num_slabs

    # ------------------------------------------------------------------
    def __iter__(self) -> Generator[SlabDescriptor, None, None]:
        """Yield SlabDescriptor objects in ascending depth order."""
        h = self.halo
        for slab_id, z0 in enumerate(self._starts):
            z1 = min(z0 + self.slab_depth, self._cube_layers)

            # Voxel layers z0..z1 inclusive, plus halo, clamped
            e0 = max(z0 - h, 0)
            e1 = min(z1 + 1 + h, self.depth)

            yield SlabDescriptor(
                slab_id  = slab_id,
                depth    = self.depth,
                core     = slice(z0, z1),
                extended = slice(e0, e1),
                halo     = h,
                is_last  = z1 == self._cube_layers,
            )


# ---------------------------------------------------------------------------
# Lightweight DAG executor  (no external dependencies)
# ---------------------------------------------------------------------------

@dataclass
class DAGNode:
    """A single step in a processing pipeline."""
    name:        str
    fn:          Callable[[Any], Any]
    depends_on:  Tuple[str, ...] = field(default_factory=tuple)


class SimpleDAGExecutor:
    """
    Topologically-sorted pipeline runner.

    Usage::

        dag = SimpleDAGExecutor()
        dag.add(DAGNode("load",     load_fn,     depends_on=()))
        dag.add(DAGNode("build",    build_fn,    depends_on=("load",)))
        dag.add(DAGNode("extract",  extract_fn,  depends_on=("build",)))
        results = dag.run(progress_callback)

    Each ``fn`` receives a dict of ``{node_name: result}`` for all nodes it
    depends on.  The return value is stored in the results dict under its own
    name and forwarded to dependent nodes.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, DAGNode] = {}

    def add(self, node: DAGNode) -> "SimpleDAGExecutor":
        self._nodes[node.name] = node
        return self

    @property
    def node_names(self) -> tuple[str, ...]:
        return tuple(self._nodes)

    def _topo_sort(self) -> list[str]:
        visited:    set[str]  = set()
        visiting:   set[str]  = set()
        order:      list[str] = []

        def dfs(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                raise ValueError(f"DAG contains a cycle through '{name}'")
            visiting.add(name)
            for dep in self._nodes[name].depends_on:
                if dep not in self._nodes:
                    raise KeyError(f"DAG node '{name}' depends on unknown node '{dep}'")
                dfs(dep)
            visiting.discard(name)
            visited.add(name)
            order.append(name)

        for name in self._nodes:
            dfs(name)
        return order

    def run(
        self,
        progress: Optional[Callable[[int, str], None]] = None,
    ) -> dict:
        order    = self._topo_sort()
        results  = {}
        total    = len(order)
        for i, name in enumerate(order):
            node    = self._nodes[name]
            inputs  = {dep: results[dep] for dep in node.depends_on}
            if progress:
                progress(int(100 * i / total), f"Running: {name}")
            results[name] = node.fn(inputs)
        if progress:
            progress(100, "Pipeline complete")
        return results
