"""
Pygame front end for the water surface simulation.

Pygame functionality:

- Surface rendering:
  - active links as thin anti-aliased lines
  - nodes as small squares, optionally shaded by height
- Mouse: moving the pointer over the surface cuts links under it
- Keyboard controls:
  - Space: pause / resume
  - Right arrow: single-step one simulation frame while paused
  - R: reset the surface
  - G: toggle FPS / cuts-per-second graphs
  - H: toggle height shading
  - Esc or window close: quit
- Recording:
  - capture frames for a fixed duration, play them back, and optionally
    write them to a video file with imageio
"""

from __future__ import annotations

import argparse
import time
from typing import List, Optional, Tuple

import imageio
import pygame

from water_surface import ConfigError, SimConfig, WaterSurfaceSim

Color = Tuple[int, int, int]

BACKGROUND_COLOR: Color = (242, 242, 245)
MESH_COLOR: Color = (72, 73, 85)  # #484955


def height_color(height: float, max_height: float) -> Color:
    """Map a node's displacement onto a mesh-grey -> cyan -> yellow gradient."""
    if max_height <= 1e-8:
        return MESH_COLOR
    h = min(max(height / max_height, 0.0), 1.0)
    if h < 0.5:
        t = h / 0.5
        return (
            int(72 * (1 - t) + 0 * t),
            int(73 * (1 - t) + 200 * t),
            int(85 * (1 - t) + 255 * t),
        )
    t = (h - 0.5) / 0.5
    return (
        int(0 * (1 - t) + 255 * t),
        int(200 * (1 - t) + 220 * t),
        int(255 * (1 - t) + 80 * t),
    )


class SurfaceRenderer:
    """Draws the current node and link state onto a pygame surface."""

    def __init__(
        self,
        background: Color = BACKGROUND_COLOR,
        mesh_color: Color = MESH_COLOR,
        node_size: int = 2,
        shade_height: bool = False,
    ) -> None:
        self.background = background
        self.mesh_color = mesh_color
        self.node_size = node_size
        self.shade_height = shade_height

    def draw(self, surface: pygame.Surface, sim: WaterSurfaceSim) -> None:
        surface.fill(self.background)

        for p1, p2 in sim.link_segments():
            pygame.draw.aaline(surface, self.mesh_color, p1, p2)

        half = self.node_size / 2
        max_height = sim.max_height() if self.shade_height else 0.0
        for node in sim.nodes:
            color = self.mesh_color
            if self.shade_height:
                color = height_color(node.height, max_height)
            rect = pygame.Rect(
                int(node.pos[0] - half), int(node.pos[1] - half), self.node_size, self.node_size
            )
            surface.fill(color, rect)


def surface_to_frame(surface: pygame.Surface):
    """Copy a surface into an (height, width, 3) uint8 array for video writers."""
    return pygame.surfarray.array3d(surface).transpose(1, 0, 2)


# ---------------------------------------------
# Pygame app: input, main loop, recording
# ---------------------------------------------

class WaterSurfaceApp:
    """Pygame app wrapper around WaterSurfaceSim."""

    def __init__(
        self,
        sim: WaterSurfaceSim,
        shade_height: bool = False,
        record: bool = False,
        record_duration: float = 10.0,
        playback_fps: int = 60,
        output_file: Optional[str] = None,
    ) -> None:
        pygame.init()
        self.clock = pygame.time.Clock()

        self.sim = sim
        self.pixel_width = int(sim.width)
        self.pixel_height = int(sim.height)
        self.screen = pygame.display.set_mode((self.pixel_width, self.pixel_height))
        pygame.display.set_caption("Water Surface (pygame)")

        self.renderer = SurfaceRenderer(shade_height=shade_height)

        self.running = True
        self.paused = False
        self.step_once = False

        # Graph display state
        self.show_graphs = False
        self.fps_history: List[float] = []
        self.cut_history: List[float] = []
        self.max_history_points = 240  # about 4 seconds at 60 fps

        # Recording state
        self.recording = record
        self.record_duration = record_duration
        self.playback_fps = playback_fps
        self.output_file = output_file
        self.recorded_frames: List[pygame.Surface] = []
        self.recording_complete = False

    # ---------------
    # Input handling
    # ---------------

    def _handle_events(self) -> None:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    self.running = False
                elif event.key == pygame.K_SPACE:
                    self.paused = not self.paused
                elif event.key == pygame.K_RIGHT:
                    # Step one frame while paused
                    self.step_once = True
                elif event.key == pygame.K_r:
                    self.sim.reset()
                    print("Surface reset.")
                elif event.key == pygame.K_g:
                    self.show_graphs = not self.show_graphs
                elif event.key == pygame.K_h:
                    self.renderer.shade_height = not self.renderer.shade_height
            elif event.type == pygame.MOUSEMOTION:
                # Window pixels are simulation units
                self.sim.check_cuts((float(event.pos[0]), float(event.pos[1])))

    # ---------------
    # Rendering
    # ---------------

    def _draw(self) -> None:
        self.renderer.draw(self.screen, self.sim)
        if self.show_graphs:
            self._draw_graphs()
        pygame.display.flip()

    def _draw_graphs(self) -> None:
        """Draw FPS and cuts-per-second graphs at top-right with grids and axis labels."""
        margin = 10
        graph_width = 200
        graph_height = 60
        right = self.pixel_width - margin
        top = margin

        bg_color = (250, 250, 252)
        border_color = (120, 120, 130)
        grid_color = (210, 210, 220)
        text_color = (40, 40, 50)

        font = pygame.font.SysFont("consolas", 12)

        def draw_single_graph(
            data: List[float],
            rect: pygame.Rect,
            color: Color,
            y_label: str,
        ) -> None:
            pygame.draw.rect(self.screen, bg_color, rect)
            pygame.draw.rect(self.screen, border_color, rect, 1)

            # Grid: 3 vertical + 2 horizontal lines
            step_x = rect.width // 4
            step_y = rect.height // 3
            for i in range(1, 4):
                x = rect.left + i * step_x
                pygame.draw.line(self.screen, grid_color, (x, rect.top), (x, rect.bottom))
            for i in range(1, 3):
                y = rect.top + i * step_y
                pygame.draw.line(self.screen, grid_color, (rect.left, y), (rect.right, y))

            max_val = 1.0
            n = len(data)
            if data:
                max_val = max(max(data), 1e-3)
            max_val *= 1.1

            for i in range(1, n):
                x0 = rect.left + int(rect.width * (i - 1) / max(n - 1, 1))
                x1 = rect.left + int(rect.width * i / max(n - 1, 1))
                y0 = rect.bottom - int(rect.height * (data[i - 1] / max_val))
                y1 = rect.bottom - int(rect.height * (data[i] / max_val))
                pygame.draw.line(self.screen, color, (x0, y0), (x1, y1), 2)

            for frac in (0.0, 1.0):
                y = rect.bottom - int(rect.height * frac)
                surf = font.render(f"{max_val * frac:.0f}", True, text_color)
                self.screen.blit(surf, (rect.left - surf.get_width() - 4, y - surf.get_height() // 2))

            label_surf = font.render(y_label, True, text_color)
            self.screen.blit(label_surf, (rect.left + 4, rect.top + 2))

        fps_rect = pygame.Rect(right - graph_width, top, graph_width, graph_height)
        draw_single_graph(self.fps_history, fps_rect, (60, 170, 60), "FPS")

        cut_rect = pygame.Rect(right - graph_width, top + graph_height + 10, graph_width, graph_height)
        draw_single_graph(self.cut_history, cut_rect, (200, 120, 40), "cuts/s")

    # ---------------
    # Main loop
    # ---------------

    def _advance(self, frame_time: float) -> None:
        if self.paused and not self.step_once:
            return
        # Cuts from this frame's events are counted before step() clears them
        cuts_per_sec = self.sim.cut_events / frame_time if frame_time > 0 else 0.0
        self.sim.step()
        self.step_once = False

        fps = self.clock.get_fps()
        if fps > 0:
            self.fps_history.append(fps)
        self.cut_history.append(cuts_per_sec)

        if len(self.fps_history) > self.max_history_points:
            self.fps_history = self.fps_history[-self.max_history_points :]
        if len(self.cut_history) > self.max_history_points:
            self.cut_history = self.cut_history[-self.max_history_points :]

    def run(self) -> None:
        target_fps = 60
        print_controls()

        recording_start = time.time()
        if self.recording:
            print(f"Recording for {self.record_duration} seconds...")
            print("Press ESC to stop recording early.")

        while self.running:
            frame_time = self.clock.tick(target_fps) / 1000.0
            self._handle_events()
            self._advance(frame_time)
            self._draw()

            if self.recording:
                self.recorded_frames.append(self.screen.copy())
                elapsed = time.time() - recording_start
                if len(self.recorded_frames) % 30 == 0:
                    progress = min(elapsed / self.record_duration, 1.0) * 100
                    print(f"Recording: {progress:.1f}% ({len(self.recorded_frames)} frames)")
                if elapsed >= self.record_duration:
                    self.recording_complete = True
                    print(f"Recording complete! Captured {len(self.recorded_frames)} frames.")
                    break

        if self.recording_complete and self.recorded_frames:
            if self.output_file:
                self._save_recording_to_file()
            print(f"\nPlaying back {len(self.recorded_frames)} frames at {self.playback_fps} FPS...")
            print("Press ESC to exit playback.")
            self._playback_recording()

        pygame.quit()

    def _playback_recording(self) -> None:
        """Play back recorded frames at the playback frame rate."""
        playback_clock = pygame.time.Clock()
        frame_index = 0
        self.running = True

        while self.running and frame_index < len(self.recorded_frames):
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    self.running = False
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                    self.running = False

            self.screen.blit(self.recorded_frames[frame_index], (0, 0))
            pygame.display.flip()
            frame_index += 1
            playback_clock.tick(self.playback_fps)

        print("Playback complete!")

    def _save_recording_to_file(self) -> None:
        """Write recorded frames to a video file."""
        print(f"\nSaving recording to {self.output_file}...")
        frames_data = []
        for i, frame in enumerate(self.recorded_frames):
            frames_data.append(surface_to_frame(frame))
            if (i + 1) % 30 == 0:
                progress = ((i + 1) / len(self.recorded_frames)) * 100
                print(f"Converting frames: {progress:.1f}% ({i + 1}/{len(self.recorded_frames)})")

        print("Writing video file...")
        imageio.mimwrite(
            self.output_file,
            frames_data,
            fps=self.playback_fps,
            codec="libx264",
            quality=8,
            pixelformat="yuv420p",
        )
        print(f"Successfully saved recording to {self.output_file}")
        print(f"Video: {len(self.recorded_frames)} frames at {self.playback_fps} FPS")


CONTROLS: List[Tuple[str, str]] = [
    ("Mouse move", "cut links under the pointer"),
    ("SPACE", "Pause/Resume simulation"),
    ("RIGHT", "Single step while paused"),
    ("R", "Reset surface"),
    ("G", "Toggle FPS / cuts graphs"),
    ("H", "Toggle height shading"),
    ("ESC", "Exit"),
]


def print_controls(keys: Optional[List[str]] = None) -> None:
    """Print the controls banner, limited to ``keys`` when given."""
    print("\n=== CONTROLS ===")
    for key, action in CONTROLS:
        if keys is None or key in keys:
            print(f"{key}: {action}")
    print("================\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Interactive water surface (mass-spring, pygame)")
    parser.add_argument(
        "--width",
        type=int,
        default=SimConfig.screen_width,
        help="Surface width in pixels.",
    )
    parser.add_argument(
        "--height",
        type=int,
        default=SimConfig.screen_height,
        help="Surface height in pixels.",
    )
    parser.add_argument(
        "--cell-size",
        type=float,
        default=SimConfig.cell_size,
        help="Grid spacing in pixels.",
    )
    parser.add_argument(
        "--restoring-strength",
        type=float,
        default=SimConfig.restoring_strength,
        help="Pull of each node toward its rest position.",
    )
    parser.add_argument(
        "--force-multiplier",
        type=float,
        default=SimConfig.force_multiplier,
        help="Gain from accumulated force to velocity.",
    )
    parser.add_argument(
        "--friction",
        type=float,
        default=SimConfig.friction,
        help="Velocity damping per step, strictly between 0 and 1.",
    )
    parser.add_argument(
        "--speed-limit",
        type=float,
        default=SimConfig.speed_limit,
        help="Maximum node speed in pixels per step.",
    )
    parser.add_argument(
        "--cut-range",
        type=float,
        default=SimConfig.cut_range,
        help="Distance from the pointer within which links are cut.",
    )
    parser.add_argument(
        "--recovery-delay",
        type=float,
        default=SimConfig.recovery_delay_ms,
        help="Milliseconds before a cut link is restored.",
    )
    parser.add_argument(
        "--shade-height",
        action="store_true",
        help="Colour nodes by their displacement from rest.",
    )
    parser.add_argument(
        "--record",
        action="store_true",
        help="Enable recording mode.",
    )
    parser.add_argument(
        "--record-duration",
        type=float,
        default=10.0,
        help="Duration in seconds to record (default: 10.0).",
    )
    parser.add_argument(
        "--playback-fps",
        type=int,
        default=60,
        help="FPS for playback of recorded frames (default: 60).",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output file path for saving the recording as a video.",
    )
    return parser


def sim_from_args(args: argparse.Namespace) -> WaterSurfaceSim:
    return WaterSurfaceSim(
        width=args.width,
        height=args.height,
        cell_size=args.cell_size,
        restoring_strength=args.restoring_strength,
        force_multiplier=args.force_multiplier,
        friction=args.friction,
        speed_limit=args.speed_limit,
        cut_range=args.cut_range,
        recovery_delay_ms=args.recovery_delay,
    )


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        sim = sim_from_args(args)
    except ConfigError as e:
        parser.error(str(e))

    app = WaterSurfaceApp(
        sim,
        shade_height=args.shade_height,
        record=args.record,
        record_duration=args.record_duration,
        playback_fps=args.playback_fps,
        output_file=args.output,
    )
    app.run()


if __name__ == "__main__":
    main()
