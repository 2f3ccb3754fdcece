"""
2D interactive water surface built from a mass-spring grid.

The surface is a rectangular lattice of point masses ("nodes") joined by
elastic "links". Moving the pointer across the surface cuts the links whose
midpoints it passes over; cut links stop pulling on their endpoints and come
back on their own after a short delay, so the mesh visibly slackens and then
settles again.

Functionality covered:

- Simulation settings:
  - restoring strength (pull of each node toward its rest position)
  - force multiplier (force -> velocity gain)
  - friction (per-step velocity damping)
  - speed limit (velocity clamp)
  - grid cell size
- Interaction settings:
  - cut range around the pointer
  - recovery delay for cut links
- Grid construction:
  - (rows + 1) x (columns + 1) nodes, row-major
  - boundary nodes pinned
  - right/bottom neighbour links, pinned-pinned pairs skipped
- Dynamics:
  - zero-rest-length link springs
  - restoring force toward each node's anchor
  - semi-implicit Euler integration with speed clamp and friction
  - link cutting by pointer proximity and timed recovery

Structure notes:

- Vectors are plain (x, y) tuples, same as the CPU fluid simulator.
- Links store node indices into the grid's node list rather than node
  objects, so active and broken link collections are plain value lists.
- All mutable state lives on a WaterSurfaceSim instance; there are no
  module-level simulation globals.
"""

from __future__ import annotations

import math
import time
from typing import Callable, List, NamedTuple, Optional, Tuple

# ---------------------------------------------
# Type aliases
# ---------------------------------------------

Vec2 = Tuple[float, float]
Clock = Callable[[], float]


# ---------------------------------------------
# Central simulation configuration
# (Edit this block to tweak behaviour)
# ---------------------------------------------


class SimConfig:
    # Surface size in pixels (one simulation unit per pixel)
    screen_width: int = 800
    screen_height: int = 600

    # Grid spacing
    cell_size: float = 40.0

    # Physical behaviour
    restoring_strength: float = 0.02
    force_multiplier: float = 0.25
    friction: float = 0.99
    speed_limit: float = 8.0

    # Interaction
    cut_range: float = 8.0
    recovery_delay_ms: float = 150.0


class ConfigError(ValueError):
    """Raised when simulation settings would produce a malformed surface."""


def now_ms() -> float:
    """Monotonic wall clock in milliseconds."""
    return time.monotonic() * 1000.0


# ---------------------------------------------
# Utility vector functions
# ---------------------------------------------

def v_add(a: Vec2, b: Vec2) -> Vec2:
    return a[0] + b[0], a[1] + b[1]


def v_sub(a: Vec2, b: Vec2) -> Vec2:
    return a[0] - b[0], a[1] - b[1]


def v_mul(a: Vec2, s: float) -> Vec2:
    return a[0] * s, a[1] * s


def v_length(a: Vec2) -> float:
    return math.hypot(a[0], a[1])


def v_distance(a: Vec2, b: Vec2) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def v_midpoint(a: Vec2, b: Vec2) -> Vec2:
    return (a[0] + b[0]) * 0.5, (a[1] + b[1]) * 0.5


# ---------------------------------------------
# Nodes and links
# ---------------------------------------------

class WaterNode:
    """A point mass on the surface, anchored at its rest position."""

    def __init__(self, x: float, y: float, pinned: bool = False) -> None:
        self.pos: Vec2 = (x, y)
        self._rest_pos: Vec2 = (x, y)
        self.vel: Vec2 = (0.0, 0.0)
        self.force: Vec2 = (0.0, 0.0)
        self._pinned: bool = pinned
        # Distance from rest position, refreshed by integrate()
        self.height: float = 0.0

    @property
    def rest_pos(self) -> Vec2:
        return self._rest_pos

    @property
    def pinned(self) -> bool:
        return self._pinned

    def add_force(self, f: Vec2) -> None:
        if self._pinned:
            return
        self.force = v_add(self.force, f)

    def apply_restoring_force(
        self, strength: float = SimConfig.restoring_strength
    ) -> None:
        """Accumulate the pull back toward the rest position."""
        if self._pinned:
            return
        rx, ry = self._rest_pos
        px, py = self.pos
        self.force = (
            self.force[0] + (rx - px) * strength,
            self.force[1] + (ry - py) * strength,
        )

    def integrate(
        self,
        force_multiplier: float = SimConfig.force_multiplier,
        speed_limit: float = SimConfig.speed_limit,
        friction: float = SimConfig.friction,
    ) -> None:
        """
        Advance one step: force -> velocity, clamp, move, clear force, damp.

        Friction is applied after the move, so it only shortens the next
        step's displacement.
        """
        if self._pinned:
            return

        vx = self.vel[0] + self.force[0] * force_multiplier
        vy = self.vel[1] + self.force[1] * force_multiplier

        speed = v_length((vx, vy))
        if speed > speed_limit:
            scale = speed_limit / speed
            vx *= scale
            vy *= scale

        self.pos = (self.pos[0] + vx, self.pos[1] + vy)
        self.force = (0.0, 0.0)
        self.vel = (vx * friction, vy * friction)

        self.height = v_distance(self.pos, self._rest_pos)


class WaterLink(NamedTuple):
    """Elastic connection between two nodes, by index into the node list."""

    a: int
    b: int

    def apply_force(self, nodes: List[WaterNode]) -> None:
        """Zero-rest-length unit spring along the current separation."""
        node1 = nodes[self.a]
        node2 = nodes[self.b]
        delta = v_sub(node2.pos, node1.pos)
        # add_force is a no-op on pinned endpoints
        node1.add_force(delta)
        node2.add_force(v_mul(delta, -1.0))

    def midpoint(self, nodes: List[WaterNode]) -> Vec2:
        return v_midpoint(nodes[self.a].pos, nodes[self.b].pos)


# ---------------------------------------------
# Grid construction
# ---------------------------------------------

class WaterGrid:
    """Node arena plus the links generated for it at build time."""

    def __init__(
        self,
        nodes: List[WaterNode],
        links: List[WaterLink],
        rows: int,
        columns: int,
    ) -> None:
        self.nodes = nodes
        self.links = links
        self.rows = rows
        self.columns = columns

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def link_count(self) -> int:
        return len(self.links)

    def index(self, row: int, col: int) -> int:
        return row * (self.columns + 1) + col


def _check_cell_size(cell_size: float) -> None:
    if not math.isfinite(cell_size) or cell_size <= 0.0:
        raise ConfigError(f"cell_size must be a positive finite number, got {cell_size!r}")


def validate_settings(
    restoring_strength: float = SimConfig.restoring_strength,
    force_multiplier: float = SimConfig.force_multiplier,
    friction: float = SimConfig.friction,
    speed_limit: float = SimConfig.speed_limit,
    cut_range: float = SimConfig.cut_range,
    recovery_delay_ms: float = SimConfig.recovery_delay_ms,
    cell_size: Optional[float] = None,
) -> None:
    """Raise ConfigError for settings that would make the surface misbehave."""
    if cell_size is not None:
        _check_cell_size(cell_size)
    if not 0.0 < friction < 1.0:
        raise ConfigError(f"friction must be strictly between 0 and 1, got {friction!r}")
    if not speed_limit > 0.0:
        raise ConfigError(f"speed_limit must be positive, got {speed_limit!r}")
    if not force_multiplier > 0.0:
        raise ConfigError(f"force_multiplier must be positive, got {force_multiplier!r}")
    for name, value in (
        ("restoring_strength", restoring_strength),
        ("cut_range", cut_range),
        ("recovery_delay_ms", recovery_delay_ms),
    ):
        if not (math.isfinite(value) and value >= 0.0):
            raise ConfigError(f"{name} must be a non-negative number, got {value!r}")


def build_grid(
    width: float,
    height: float,
    cell_size: float = SimConfig.cell_size,
) -> WaterGrid:
    """
    Lay out a (rows + 1) x (columns + 1) lattice over a width x height surface.

    The cell counts are the whole number of cells that fit along each axis;
    node positions are interpolated so the outer nodes sit exactly on the
    surface edges. Boundary nodes are pinned. Each node links to its right
    and bottom neighbours unless both ends are pinned.
    """
    _check_cell_size(cell_size)
    if not (math.isfinite(width) and math.isfinite(height)):
        raise ConfigError(f"surface size must be finite, got {width!r} x {height!r}")

    columns = int(math.floor(width / cell_size))
    rows = int(math.floor(height / cell_size))
    if rows <= 0 or columns <= 0:
        return WaterGrid([], [], max(rows, 0), max(columns, 0))

    nodes: List[WaterNode] = []
    for i in range(rows + 1):
        for j in range(columns + 1):
            x = (j / columns) * width
            y = (i / rows) * height
            pinned = i == 0 or j == 0 or i == rows or j == columns
            nodes.append(WaterNode(x, y, pinned))

    links: List[WaterLink] = []
    stride = columns + 1
    for i in range(rows + 1):
        for j in range(columns + 1):
            index = i * stride + j
            current = nodes[index]

            if j < columns:
                right = index + 1
                if not (current.pinned and nodes[right].pinned):
                    links.append(WaterLink(index, right))

            if i < rows:
                bottom = index + stride
                if not (current.pinned and nodes[bottom].pinned):
                    links.append(WaterLink(index, bottom))

    return WaterGrid(nodes, links, rows, columns)


# ---------------------------------------------
# Link cutting and recovery
# ---------------------------------------------

class BrokenLink(NamedTuple):
    link: WaterLink
    broken_time: float


class LinkCutRegistry:
    """
    Tracks links cut by the pointer and puts them back after a delay.

    Each link is either Active (present in ``links``) or Broken (held in
    ``broken_links``), never both. Recovery is unconditional once the delay
    has elapsed.
    """

    def __init__(
        self,
        links: List[WaterLink],
        cut_range: float = SimConfig.cut_range,
        recovery_delay_ms: float = SimConfig.recovery_delay_ms,
    ) -> None:
        # Shared with the simulation; mutated in place
        self.links = links
        self.cut_range = cut_range
        self.recovery_delay_ms = recovery_delay_ms
        self.broken_links: List[BrokenLink] = []

    def is_broken(self, link: WaterLink) -> bool:
        return any(broken.link == link for broken in self.broken_links)

    def cut_link(self, link: WaterLink, now: float) -> bool:
        """Move an active link to the broken list. Returns False if it was not active."""
        if link not in self.links:
            return False
        self.links.remove(link)
        self.broken_links.append(BrokenLink(link, now))
        return True

    def check_cuts(self, nodes: List[WaterNode], pointer: Vec2, now: float) -> int:
        """Cut every active link whose midpoint is within cut_range of pointer."""
        cut = 0
        for link in list(self.links):
            if v_distance(pointer, link.midpoint(nodes)) < self.cut_range:
                if self.cut_link(link, now):
                    cut += 1
        return cut

    def handle_recovery(self, now: float) -> int:
        """Reinsert links that have been broken for at least the recovery delay."""
        restored = 0
        for broken in list(self.broken_links):
            if now - broken.broken_time >= self.recovery_delay_ms:
                self.links.append(broken.link)
                self.broken_links.remove(broken)
                restored += 1
        return restored


# ---------------------------------------------
# Simulation state and parameters
# ---------------------------------------------

class WaterSurfaceSim:
    """
    Owns the grid, the active links and the cut registry for one surface.

    The host loop calls ``check_cuts`` for pointer input and ``step`` once
    per frame; renderers read ``nodes`` and ``links`` between steps.
    """

    def __init__(
        self,
        width: float = SimConfig.screen_width,
        height: float = SimConfig.screen_height,
        cell_size: float = SimConfig.cell_size,
        restoring_strength: float = SimConfig.restoring_strength,
        force_multiplier: float = SimConfig.force_multiplier,
        friction: float = SimConfig.friction,
        speed_limit: float = SimConfig.speed_limit,
        cut_range: float = SimConfig.cut_range,
        recovery_delay_ms: float = SimConfig.recovery_delay_ms,
        clock: Optional[Clock] = None,
    ) -> None:
        self.width: float = width
        self.height: float = height
        self.cell_size: float = cell_size

        # Physical behaviour
        self.restoring_strength: float = restoring_strength
        self.force_multiplier: float = force_multiplier
        self.friction: float = friction
        self.speed_limit: float = speed_limit

        # Interaction settings
        self.cut_range: float = cut_range
        self.recovery_delay_ms: float = recovery_delay_ms

        self.clock: Clock = clock if clock is not None else now_ms

        validate_settings(
            cell_size=self.cell_size,
            restoring_strength=self.restoring_strength,
            force_multiplier=self.force_multiplier,
            friction=self.friction,
            speed_limit=self.speed_limit,
            cut_range=self.cut_range,
            recovery_delay_ms=self.recovery_delay_ms,
        )

        # Links cut since the start of the current frame
        self.cut_events: int = 0

        self.grid: WaterGrid
        self.nodes: List[WaterNode]
        self.links: List[WaterLink]
        self.registry: LinkCutRegistry
        self._init_grid()

    def _init_grid(self) -> None:
        self.grid = build_grid(self.width, self.height, self.cell_size)
        self.nodes = self.grid.nodes
        # Active set starts as a copy so the build-time list stays intact
        self.links = list(self.grid.links)
        self.registry = LinkCutRegistry(self.links, self.cut_range, self.recovery_delay_ms)

    def reset(self) -> None:
        """Rebuild the surface at rest with every link active."""
        self.cut_events = 0
        self._init_grid()

    @property
    def rows(self) -> int:
        return self.grid.rows

    @property
    def columns(self) -> int:
        return self.grid.columns

    # -------------------------
    # Interaction
    # -------------------------

    def check_cuts(self, pointer: Vec2, now: Optional[float] = None) -> int:
        if now is None:
            now = self.clock()
        cut = self.registry.check_cuts(self.nodes, pointer, now)
        self.cut_events += cut
        return cut

    # -------------------------
    # Simulation step
    # -------------------------

    def update_links(self) -> None:
        for link in self.links:
            link.apply_force(self.nodes)

    def update_nodes(self) -> None:
        for node in self.nodes:
            node.apply_restoring_force(self.restoring_strength)
            node.integrate(self.force_multiplier, self.speed_limit, self.friction)

    def handle_link_recovery(self, now: Optional[float] = None) -> int:
        if now is None:
            now = self.clock()
        return self.registry.handle_recovery(now)

    def step(self, now: Optional[float] = None) -> None:
        """Run one frame: link forces, node integration, link recovery."""
        self.cut_events = 0
        self.update_links()
        self.update_nodes()
        self.handle_link_recovery(now)

    # -------------------------
    # Read-only views
    # -------------------------

    def node_positions(self) -> List[Vec2]:
        return [node.pos for node in self.nodes]

    def link_segments(self) -> List[Tuple[Vec2, Vec2]]:
        return [(self.nodes[link.a].pos, self.nodes[link.b].pos) for link in self.links]

    def max_height(self) -> float:
        return max((node.height for node in self.nodes), default=0.0)
