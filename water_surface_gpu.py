"""
Taichi port of the water surface simulation.

The node arena lives in taichi fields; links are index pairs with an
``active`` mask instead of a growable list, so cutting and recovery only
flip flags. Link forces are accumulated with atomic adds before any node
moves, which keeps the step identical to the CPU version in water_surface.py.
"""

import time
from typing import List, Optional

import numpy as np
import taichi as ti

from water_surface import (
    Clock,
    ConfigError,
    SimConfig,
    Vec2,
    WaterGrid,
    build_grid,
    now_ms,
    validate_settings,
)

MESH_COLOR = (72 / 255, 73 / 255, 85 / 255)
BACKGROUND_COLOR = (242 / 255, 242 / 255, 245 / 255)


@ti.data_oriented
class WaterSurfaceGPU:
    """Node/link arena and per-frame kernels for one surface."""

    def __init__(
        self,
        grid: WaterGrid,
        width: float,
        height: float,
        restoring_strength: float = SimConfig.restoring_strength,
        force_multiplier: float = SimConfig.force_multiplier,
        friction: float = SimConfig.friction,
        speed_limit: float = SimConfig.speed_limit,
        cut_range: float = SimConfig.cut_range,
        recovery_delay_ms: float = SimConfig.recovery_delay_ms,
        clock: Optional[Clock] = None,
    ) -> None:
        validate_settings(
            restoring_strength=restoring_strength,
            force_multiplier=force_multiplier,
            friction=friction,
            speed_limit=speed_limit,
            cut_range=cut_range,
            recovery_delay_ms=recovery_delay_ms,
        )
        self.width = width
        self.height = height
        self.restoring_strength = restoring_strength
        self.force_multiplier = force_multiplier
        self.friction = friction
        self.speed_limit = speed_limit
        self.cut_range = cut_range
        self.recovery_delay_ms = recovery_delay_ms

        self.node_count = grid.node_count
        self.link_count = grid.link_count
        # Fields cannot be empty; pad degenerate grids to one slot
        n = max(self.node_count, 1)
        m = max(self.link_count, 1)

        self.pos = ti.Vector.field(2, dtype=ti.f32, shape=n)
        self.rest_pos = ti.Vector.field(2, dtype=ti.f32, shape=n)
        self.vel = ti.Vector.field(2, dtype=ti.f32, shape=n)
        self.force = ti.Vector.field(2, dtype=ti.f32, shape=n)
        self.pinned = ti.field(dtype=ti.i32, shape=n)
        self.node_height = ti.field(dtype=ti.f32, shape=n)

        self.link_a = ti.field(dtype=ti.i32, shape=m)
        self.link_b = ti.field(dtype=ti.i32, shape=m)
        self.link_active = ti.field(dtype=ti.i32, shape=m)
        # Milliseconds since this instance was created
        self.broken_time = ti.field(dtype=ti.f32, shape=m)

        # Render buffers: normalised vertices and a line index list
        self.vertices = ti.Vector.field(2, dtype=ti.f32, shape=n)
        self.line_indices = ti.field(dtype=ti.i32, shape=2 * m)

        self.clock: Clock = clock if clock is not None else now_ms
        self._epoch_ms = self.clock()
        self.reset(grid)

    def reset(self, grid: WaterGrid) -> None:
        """Load the grid's rest state into the fields with every link active."""
        if self.node_count:
            rest = np.array([node.rest_pos for node in grid.nodes], dtype=np.float32)
            self.pos.from_numpy(rest)
            self.rest_pos.from_numpy(rest)
            self.pinned.from_numpy(
                np.array([1 if node.pinned else 0 for node in grid.nodes], dtype=np.int32)
            )
        if self.link_count:
            self.link_a.from_numpy(np.array([link.a for link in grid.links], dtype=np.int32))
            self.link_b.from_numpy(np.array([link.b for link in grid.links], dtype=np.int32))
        self.vel.fill(0.0)
        self.force.fill(0.0)
        self.node_height.fill(0.0)
        self.link_active.fill(1)
        self.broken_time.fill(0.0)

    def _elapsed(self, now: Optional[float]) -> float:
        if now is None:
            now = self.clock()
        return now - self._epoch_ms

    # -------------------------
    # Kernels
    # -------------------------

    @ti.kernel
    def _apply_link_forces(self, link_count: ti.i32):
        for k in range(link_count):
            if self.link_active[k] == 1:
                a = self.link_a[k]
                b = self.link_b[k]
                delta = self.pos[b] - self.pos[a]
                if self.pinned[a] == 0:
                    self.force[a] += delta
                if self.pinned[b] == 0:
                    self.force[b] -= delta

    @ti.kernel
    def _update_nodes(
        self,
        node_count: ti.i32,
        restoring_strength: ti.f32,
        force_multiplier: ti.f32,
        speed_limit: ti.f32,
        friction: ti.f32,
    ):
        for i in range(node_count):
            if self.pinned[i] == 0:
                f = self.force[i] + (self.rest_pos[i] - self.pos[i]) * restoring_strength
                v = self.vel[i] + f * force_multiplier
                speed = v.norm()
                if speed > speed_limit:
                    v = v * (speed_limit / speed)
                self.pos[i] += v
                self.force[i] = ti.Vector([0.0, 0.0])
                self.vel[i] = v * friction
                self.node_height[i] = (self.pos[i] - self.rest_pos[i]).norm()

    @ti.kernel
    def _check_cuts(
        self, link_count: ti.i32, px: ti.f32, py: ti.f32, cut_range: ti.f32, now: ti.f32
    ) -> ti.i32:
        cut = 0
        pointer = ti.Vector([px, py])
        for k in range(link_count):
            if self.link_active[k] == 1:
                mid = (self.pos[self.link_a[k]] + self.pos[self.link_b[k]]) * 0.5
                if (pointer - mid).norm() < cut_range:
                    self.link_active[k] = 0
                    self.broken_time[k] = now
                    cut += 1
        return cut

    @ti.kernel
    def _handle_recovery(self, link_count: ti.i32, now: ti.f32, delay: ti.f32) -> ti.i32:
        restored = 0
        for k in range(link_count):
            if self.link_active[k] == 0 and now - self.broken_time[k] >= delay:
                self.link_active[k] = 1
                restored += 1
        return restored

    @ti.kernel
    def _fill_render_buffers(self, node_count: ti.i32, link_count: ti.i32, width: ti.f32, height: ti.f32):
        for i in range(node_count):
            # Canvas origin is bottom-left, surface origin is top-left
            p = self.pos[i]
            self.vertices[i] = ti.Vector([p[0] / width, 1.0 - p[1] / height])
        for k in range(link_count):
            a = self.link_a[k]
            b = self.link_b[k]
            if self.link_active[k] == 0:
                # Collapse broken links to a zero-length segment
                b = a
            self.line_indices[2 * k] = a
            self.line_indices[2 * k + 1] = b

    # -------------------------
    # Simulation API
    # -------------------------

    def check_cuts(self, pointer: Vec2, now: Optional[float] = None) -> int:
        if self.link_count == 0:
            return 0
        return self._check_cuts(
            self.link_count, pointer[0], pointer[1], self.cut_range, self._elapsed(now)
        )

    def handle_link_recovery(self, now: Optional[float] = None) -> int:
        if self.link_count == 0:
            return 0
        return self._handle_recovery(self.link_count, self._elapsed(now), self.recovery_delay_ms)

    def step(self, now: Optional[float] = None) -> None:
        """Run one frame: link forces, node integration, link recovery."""
        if self.link_count:
            self._apply_link_forces(self.link_count)
        if self.node_count:
            self._update_nodes(
                self.node_count,
                self.restoring_strength,
                self.force_multiplier,
                self.speed_limit,
                self.friction,
            )
        self.handle_link_recovery(now)

    def node_positions(self) -> np.ndarray:
        return self.pos.to_numpy()[: self.node_count]

    def node_heights(self) -> np.ndarray:
        return self.node_height.to_numpy()[: self.node_count]

    def active_link_count(self) -> int:
        return int(self.link_active.to_numpy()[: self.link_count].sum())

    def render(self, canvas) -> None:
        if self.node_count == 0:
            return
        self._fill_render_buffers(self.node_count, self.link_count, self.width, self.height)
        if self.link_count:
            canvas.lines(self.vertices, width=0.001, indices=self.line_indices, color=MESH_COLOR)
        canvas.circles(self.vertices, radius=0.0015, color=MESH_COLOR)


# ----------------------------------------------------------------------------
# Main Loop
# ----------------------------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> None:
    from water_surface_app import build_parser, print_controls

    parser = build_parser()
    parser.description = "Interactive water surface (mass-spring, taichi)"
    args = parser.parse_args(argv)

    try:
        grid = build_grid(args.width, args.height, args.cell_size)
        validate_settings(
            restoring_strength=args.restoring_strength,
            force_multiplier=args.force_multiplier,
            friction=args.friction,
            speed_limit=args.speed_limit,
            cut_range=args.cut_range,
            recovery_delay_ms=args.recovery_delay,
        )
    except ConfigError as e:
        parser.error(str(e))

    ti.init(arch=ti.gpu)

    surface = WaterSurfaceGPU(
        grid,
        args.width,
        args.height,
        restoring_strength=args.restoring_strength,
        force_multiplier=args.force_multiplier,
        friction=args.friction,
        speed_limit=args.speed_limit,
        cut_range=args.cut_range,
        recovery_delay_ms=args.recovery_delay,
    )
    print(f"Grid: {grid.rows} x {grid.columns} cells, {grid.node_count} nodes, {grid.link_count} links")

    print_controls(["Mouse move", "SPACE", "R", "ESC"])

    window = ti.ui.Window("Water Surface (taichi)", (args.width, args.height), vsync=True)
    canvas = window.get_canvas()

    paused = False
    last_cursor = None
    frame_count = 0
    last_time = time.time()

    while window.running:
        if window.get_event(ti.ui.PRESS):
            if window.event.key == ti.ui.ESCAPE:
                break
            elif window.event.key == ti.ui.SPACE:
                paused = not paused
                print(f"Simulation {'PAUSED' if paused else 'RESUMED'}")
            elif window.event.key == "r":
                surface.reset(grid)
                print("Surface reset.")

        cx, cy = window.get_cursor_pos()
        cursor = (cx * args.width, (1.0 - cy) * args.height)
        if cursor != last_cursor:
            surface.check_cuts(cursor)
            last_cursor = cursor

        if not paused:
            surface.step()

        canvas.set_background_color(BACKGROUND_COLOR)
        surface.render(canvas)
        window.show()

        frame_count += 1
        if frame_count % 60 == 0:
            curr_time = time.time()
            fps = 60.0 / (curr_time - last_time)
            status = "[PAUSED]" if paused else ""
            print(f"FPS: {fps:.1f} {status} Active links: {surface.active_link_count()}/{surface.link_count}")
            last_time = curr_time


if __name__ == "__main__":
    main()
