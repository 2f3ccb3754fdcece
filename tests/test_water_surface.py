"""
Tests for the water surface core: nodes, links, grid building, link cutting
and the per-frame step.

pytest -q tests/test_water_surface.py
"""

import math

import pytest

from water_surface import (
    ConfigError,
    LinkCutRegistry,
    SimConfig,
    WaterLink,
    WaterNode,
    WaterSurfaceSim,
    build_grid,
    validate_settings,
)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def small_sim(**kwargs) -> WaterSurfaceSim:
    """2 x 2 cells: 9 nodes, only the centre node (index 4) is free."""
    kwargs.setdefault("clock", FakeClock(1000.0))
    return WaterSurfaceSim(80, 80, 40, **kwargs)


# --- nodes ----------------------------------------------------------------- #

def test_restoring_force_pulls_toward_rest():
    node = WaterNode(10.0, 20.0)
    node.pos = (11.0, 20.0)
    node.apply_restoring_force(0.02)
    assert node.force[0] == pytest.approx(-0.02)
    assert node.force[1] == 0.0

    # Accumulates, never resets
    node.apply_restoring_force(0.02)
    assert node.force[0] == pytest.approx(-0.04)


def test_pinned_node_ignores_force_and_integration():
    node = WaterNode(5.0, 5.0, pinned=True)
    node.add_force((100.0, 100.0))
    node.apply_restoring_force()
    node.integrate()
    assert node.force == (0.0, 0.0)
    assert node.pos == node.rest_pos == (5.0, 5.0)
    assert node.vel == (0.0, 0.0)


def test_pinned_and_rest_pos_are_read_only():
    node = WaterNode(1.0, 2.0, pinned=True)
    with pytest.raises(AttributeError):
        node.pinned = False
    with pytest.raises(AttributeError):
        node.rest_pos = (0.0, 0.0)


def test_integrate_moves_before_friction():
    node = WaterNode(0.0, 0.0)
    node.force = (4.0, 0.0)
    node.integrate(force_multiplier=0.25, speed_limit=8.0, friction=0.5)

    # Full velocity is used for the move; friction only affects the next step
    assert node.pos == (1.0, 0.0)
    assert node.vel == (0.5, 0.0)
    assert node.force == (0.0, 0.0)
    assert node.height == pytest.approx(1.0)


@pytest.mark.parametrize("force", [(1000.0, -500.0), (0.0, 1e6), (-3e4, -3e4)])
def test_speed_is_clamped(force):
    node = WaterNode(0.0, 0.0)
    node.force = force
    node.integrate(force_multiplier=0.25, speed_limit=8.0, friction=0.99)

    moved = math.hypot(*node.pos)
    assert moved == pytest.approx(8.0)
    assert math.hypot(*node.vel) <= 8.0
    # Direction is preserved
    direction = math.atan2(force[1], force[0])
    assert math.atan2(node.pos[1], node.pos[0]) == pytest.approx(direction)


# --- links ----------------------------------------------------------------- #

@pytest.mark.parametrize(
    "p1, p2",
    [((0.0, 0.0), (3.0, 4.0)), ((-7.5, 2.25), (11.0, -0.5)), ((1e3, 1e3), (1e3, 1e3))],
)
def test_link_force_is_equal_and_opposite(p1, p2):
    nodes = [WaterNode(*p1), WaterNode(*p2)]
    WaterLink(0, 1).apply_force(nodes)

    assert nodes[0].force == (p2[0] - p1[0], p2[1] - p1[1])
    assert nodes[1].force == (-nodes[0].force[0], -nodes[0].force[1])


def test_link_force_skips_pinned_endpoint():
    nodes = [WaterNode(0.0, 0.0, pinned=True), WaterNode(3.0, 4.0)]
    WaterLink(0, 1).apply_force(nodes)
    assert nodes[0].force == (0.0, 0.0)
    assert nodes[1].force == (-3.0, -4.0)


# --- grid ------------------------------------------------------------------ #

def count_expected_links(grid) -> int:
    expected = 0
    for row in range(grid.rows + 1):
        for col in range(grid.columns + 1):
            here = grid.nodes[grid.index(row, col)]
            if col < grid.columns and not (here.pinned and grid.nodes[grid.index(row, col + 1)].pinned):
                expected += 1
            if row < grid.rows and not (here.pinned and grid.nodes[grid.index(row + 1, col)].pinned):
                expected += 1
    return expected


@pytest.mark.parametrize("rows, columns", [(1, 1), (2, 2), (3, 4), (5, 2), (7, 9)])
def test_grid_topology_counts(rows, columns):
    grid = build_grid(columns * 10.0, rows * 10.0, 10.0)

    assert grid.rows == rows
    assert grid.columns == columns
    assert grid.node_count == (rows + 1) * (columns + 1)
    assert grid.link_count == count_expected_links(grid)
    if rows >= 2 and columns >= 2:
        all_pairs = (rows + 1) * columns + rows * (columns + 1)
        assert grid.link_count == all_pairs - 2 * (rows + columns)


def test_grid_pins_boundary_only():
    grid = build_grid(160, 120, 40)
    for row in range(grid.rows + 1):
        for col in range(grid.columns + 1):
            node = grid.nodes[grid.index(row, col)]
            boundary = row in (0, grid.rows) or col in (0, grid.columns)
            assert node.pinned == boundary
            assert node.pos == pytest.approx((col * 40.0, row * 40.0))


def test_grid_links_never_join_two_pinned_nodes():
    grid = build_grid(400, 240, 40)
    for link in grid.links:
        assert link.a != link.b
        assert not (grid.nodes[link.a].pinned and grid.nodes[link.b].pinned)


def test_small_grid_links_are_ordered():
    grid = build_grid(80, 80, 40)
    assert grid.links == [WaterLink(1, 4), WaterLink(3, 4), WaterLink(4, 5), WaterLink(4, 7)]


def test_grid_is_deterministic():
    first = build_grid(330, 250, 40)
    second = build_grid(330, 250, 40)
    assert first.links == second.links
    assert [n.pos for n in first.nodes] == [n.pos for n in second.nodes]


def test_fractional_grid_spans_full_surface():
    grid = build_grid(100, 90, 40)
    assert (grid.rows, grid.columns) == (2, 2)
    xs = sorted({node.pos[0] for node in grid.nodes})
    ys = sorted({node.pos[1] for node in grid.nodes})
    assert xs == [0.0, 50.0, 100.0]
    assert ys == [0.0, 45.0, 90.0]


@pytest.mark.parametrize("width, height", [(30, 200), (200, 0), (0, 0), (-80, 80)])
def test_degenerate_grid_is_empty(width, height):
    grid = build_grid(width, height, 40)
    assert grid.nodes == []
    assert grid.links == []


@pytest.mark.parametrize("cell_size", [0, -40, float("nan"), float("inf")])
def test_bad_cell_size_fails_fast(cell_size):
    with pytest.raises(ConfigError, match="cell_size"):
        build_grid(800, 600, cell_size)


# --- cut / recovery -------------------------------------------------------- #

def test_cut_and_recover_round_trip():
    sim = small_sim()
    original = list(sim.links)
    target = WaterLink(4, 5)

    # Midpoint of the centre -> right link
    assert sim.check_cuts((60.0, 40.0), now=1000.0) == 1
    assert target not in sim.links
    assert sim.registry.is_broken(target)
    assert len(sim.links) == 3

    sim.step(now=1000.0 + SimConfig.recovery_delay_ms - 1)
    assert target not in sim.links

    sim.step(now=1000.0 + SimConfig.recovery_delay_ms)
    assert sim.links.count(target) == 1
    assert not sim.registry.broken_links
    assert sorted(sim.links) == sorted(original)

    restored = sim.links[sim.links.index(target)]
    assert (restored.a, restored.b) == (4, 5)


def test_cut_test_is_idempotent():
    sim = small_sim()
    assert sim.check_cuts((60.0, 40.0), now=1000.0) == 1
    assert sim.check_cuts((60.0, 40.0), now=1001.0) == 0
    assert len(sim.links) == 3
    assert len(sim.registry.broken_links) == 1
    assert sim.registry.broken_links[0].broken_time == 1000.0


def test_cutting_a_broken_link_again_is_a_no_op():
    sim = small_sim()
    link = WaterLink(4, 5)
    assert sim.registry.cut_link(link, now=1000.0)
    assert not sim.registry.cut_link(link, now=1010.0)

    assert len(sim.registry.broken_links) == 1
    assert sim.registry.broken_links[0].broken_time == 1000.0
    assert link not in sim.links
    assert len(sim.links) == 3


def test_cutting_everything_recovers_without_duplicates():
    sim = small_sim(cut_range=25.0)
    original = sorted(sim.links)

    assert sim.check_cuts((40.0, 40.0), now=0.0) == 4
    assert sim.links == []

    sim.handle_link_recovery(now=500.0)
    assert sorted(sim.links) == original
    assert len(set(sim.links)) == len(sim.links)


def test_pointer_outside_range_cuts_nothing():
    sim = small_sim()
    assert sim.check_cuts((10.0, 70.0)) == 0
    assert len(sim.links) == 4


def test_registry_uses_shared_link_list():
    links = [WaterLink(0, 1)]
    nodes = [WaterNode(0.0, 0.0), WaterNode(10.0, 0.0)]
    registry = LinkCutRegistry(links, cut_range=2.0, recovery_delay_ms=10.0)

    registry.check_cuts(nodes, (5.0, 0.0), now=0.0)
    assert links == []
    assert registry.handle_recovery(now=9.0) == 0
    assert registry.handle_recovery(now=10.0) == 1
    assert links == [WaterLink(0, 1)]


def test_clock_is_used_when_no_time_given():
    clock = FakeClock(50.0)
    sim = small_sim(clock=clock)
    sim.check_cuts((60.0, 40.0))
    assert sim.registry.broken_links[0].broken_time == 50.0

    clock.now = 50.0 + sim.recovery_delay_ms
    sim.step()
    assert WaterLink(4, 5) in sim.links


# --- simulation step ------------------------------------------------------- #

def test_centre_node_at_rest_stays_put():
    sim = small_sim()
    sim.step()
    centre = sim.nodes[4]
    assert centre.pos == centre.rest_pos == (40.0, 40.0)
    assert centre.vel == (0.0, 0.0)


def test_displaced_centre_is_pulled_back():
    sim = small_sim()
    centre = sim.nodes[4]
    centre.pos = (41.0, 40.0)

    sim.update_links()
    centre.apply_restoring_force(sim.restoring_strength)
    assert centre.force[0] < 0.0
    assert centre.force[1] == pytest.approx(0.0)

    sim.nodes[4].force = (0.0, 0.0)
    sim.step()
    assert centre.pos[0] < 41.0


def test_pin_invariant_holds_over_many_frames():
    clock = FakeClock(0.0)
    sim = WaterSurfaceSim(200, 160, 40, clock=clock)
    sim.check_cuts((60.0, 80.0))
    sim.check_cuts((100.0, 60.0))

    for frame in range(120):
        clock.now = frame * 16.0
        sim.step()
        for node in sim.nodes:
            if node.pinned:
                assert node.pos == node.rest_pos
                assert node.vel == (0.0, 0.0)
            assert math.hypot(*node.vel) <= sim.speed_limit


def test_cut_slackens_the_mesh():
    sim = small_sim()
    sim.check_cuts((60.0, 40.0), now=1000.0)
    sim.step(now=1001.0)
    centre = sim.nodes[4]
    # Remaining links pull the centre toward the left edge
    assert centre.pos[0] < 40.0
    assert centre.height > 0.0
    assert sim.max_height() == centre.height


def test_cut_events_reset_each_step():
    sim = small_sim()
    sim.check_cuts((60.0, 40.0), now=1000.0)
    assert sim.cut_events == 1
    sim.step(now=1001.0)
    assert sim.cut_events == 0


def test_reset_restores_rest_state():
    sim = small_sim()
    sim.check_cuts((60.0, 40.0), now=1000.0)
    for i in range(5):
        sim.step(now=1001.0 + i)

    sim.reset()
    assert len(sim.links) == 4
    assert sim.registry.broken_links == []
    assert all(node.pos == node.rest_pos for node in sim.nodes)


def test_render_views_follow_active_links():
    sim = small_sim()
    assert sim.node_positions()[4] == (40.0, 40.0)
    assert ((40.0, 40.0), (80.0, 40.0)) in sim.link_segments()

    sim.check_cuts((60.0, 40.0), now=1000.0)
    assert ((40.0, 40.0), (80.0, 40.0)) not in sim.link_segments()


def test_empty_surface_steps_cleanly():
    sim = WaterSurfaceSim(20, 20, 40)
    sim.step()
    assert sim.check_cuts((10.0, 10.0)) == 0
    assert sim.max_height() == 0.0


@pytest.mark.parametrize(
    "settings",
    [
        {"cell_size": 0},
        {"friction": 1.0},
        {"friction": 0.0},
        {"speed_limit": 0.0},
        {"force_multiplier": -0.1},
        {"restoring_strength": -0.02},
        {"cut_range": float("nan")},
        {"recovery_delay_ms": -1.0},
    ],
)
def test_bad_settings_raise_config_error(settings):
    with pytest.raises(ConfigError):
        WaterSurfaceSim(800, 600, **settings)


def test_validate_settings_accepts_defaults():
    validate_settings()
    validate_settings(cell_size=SimConfig.cell_size)


def test_validate_settings_checks_cell_size_only_when_given():
    validate_settings(friction=0.5)
    with pytest.raises(ConfigError):
        validate_settings(cell_size=-40.0)
