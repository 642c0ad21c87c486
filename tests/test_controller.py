"""Integration tests for PuzzleController orchestration."""
from __future__ import annotations

from dataclasses import replace

import pytest
from PIL import Image

from seamless_puzzle.buffers import buffer_metrics
from seamless_puzzle.config import PuzzleConfig
from seamless_puzzle.controllers import PuzzleController
from seamless_puzzle.errors import ExportError, SessionDisposedError
from seamless_puzzle.layouts import PuzzleMode

TIMEOUT = 10


@pytest.fixture()
def controller_factory(fast_config):
    created = []

    def _make(config: PuzzleConfig = None, **kwargs) -> PuzzleController:
        controller = PuzzleController(config or fast_config, **kwargs)
        created.append(controller)
        return controller

    yield _make
    for controller in created:
        controller.dispose()


def _preview(controller: PuzzleController):
    future = controller.request_preview()
    result = future.result(timeout=TIMEOUT)
    controller.wait_for_idle(TIMEOUT)
    return result


def test_load_files_appends_tiles_and_records_history(controller_factory, make_image_file):
    statuses, progress = [], []
    controller = controller_factory(on_status=statuses.append, on_progress=progress.append)
    paths = [make_image_file(size=(40 + i, 30)) for i in range(3)]

    assets = controller.load_files(paths)

    assert controller.tiles == assets
    assert [a.pixels.width for a in controller.tiles] == [40, 41, 42]
    assert controller.can_undo
    assert "Loaded 3 images" in statuses
    assert 1.0 in progress


def test_load_files_reports_skipped_files(controller_factory, make_image_file, tmp_path):
    statuses = []
    controller = controller_factory(on_status=statuses.append)
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"broken")
    controller.load_files([make_image_file(), bad])
    assert len(controller.tiles) == 1
    assert statuses[-1] == "Loaded 1 images (1 skipped)"


def test_preview_reports_size_and_pregenerates(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(size=(40, 30)), make_image_file(size=(80, 30))])

    assert _preview(controller) == (120, 30)
    assert controller.session.preview.size == (120, 30)
    assert controller.preview_generated
    assert controller.can_save
    # Full-size composite was prepared in the background
    assert controller.session.composite is not None
    assert controller.session.composite.size == (120, 30)


def test_unclaimed_previews_do_not_leak(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(size=(40, 30))])
    _preview(controller)
    before = buffer_metrics.live

    for mode in ("vertical", "horizontal", "vertical"):
        controller.set_layout_mode(mode)
        controller.wait_for_idle(TIMEOUT)
    _preview(controller)

    assert buffer_metrics.live == before


def test_preview_snapshot_is_an_owned_copy(controller_factory, make_image_file):
    controller = controller_factory()
    assert controller.preview_snapshot() is None
    controller.load_files([make_image_file(size=(40, 30))])
    _preview(controller)

    snapshot = controller.preview_snapshot()
    try:
        assert snapshot is not controller.session.preview
        assert snapshot.size == controller.session.preview.size
    finally:
        snapshot.release()
    assert not controller.session.preview.released


def test_preview_with_no_tiles_resolves_none(controller_factory):
    controller = controller_factory()
    assert _preview(controller) is None
    assert not controller.preview_generated


def test_on_preview_callback_receives_preview(controller_factory, make_image_file):
    delivered = []
    controller = controller_factory(on_preview=delivered.append)
    controller.load_files([make_image_file()])
    size = _preview(controller)
    assert [buffer.size for buffer in delivered] == [size]
    assert delivered[0] is not controller.session.preview
    delivered[0].release()


def test_back_to_back_previews_cancel_the_first_without_leaks(
    controller_factory, make_image_file, fast_config
):
    controller = controller_factory(replace(fast_config, preview_debounce_ms=50))
    controller.load_files([make_image_file(), make_image_file(size=(60, 30))])
    _preview(controller)

    before = buffer_metrics.live
    first = controller.request_preview()
    second = controller.request_preview()

    assert first.result(timeout=TIMEOUT) is None
    assert second.result(timeout=TIMEOUT) is not None
    controller.wait_for_idle(TIMEOUT)

    assert buffer_metrics.live == before


def test_set_layout_mode_updates_preview(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file() for _ in range(4)])
    controller.move_tile(0, 1)

    future = controller.set_layout_mode("grid4")
    size = future.result(timeout=TIMEOUT)
    controller.wait_for_idle(TIMEOUT)
    assert controller.mode is PuzzleMode.GRID4
    assert controller.reorder_warning is False
    # 400x200 preview bounds give 100 px cells
    assert size == (200, 200)


def test_save_reuses_pregenerated_composite(controller_factory, make_image_file):
    progress, statuses = [], []
    controller = controller_factory(on_progress=progress.append, on_status=statuses.append)
    controller.load_files([make_image_file(), make_image_file(size=(20, 30))])
    _preview(controller)
    assert controller.session.composite is not None

    compose_calls = []
    real_compose = controller._compositor.compose
    controller._compositor.compose = lambda *a, **kw: compose_calls.append(a) or real_compose(*a, **kw)

    path = controller.save()

    assert compose_calls == []
    assert path.exists()
    with Image.open(path) as saved:
        assert saved.size == (60, 30)
    assert controller.session.composite is None
    assert progress[-1] == pytest.approx(1.0)
    assert any(p == pytest.approx(0.7) for p in progress)
    assert statuses[-1] == f"Saved to {path}"


def test_save_composes_when_nothing_pregenerated(controller_factory, make_image_file, fast_config):
    controller = controller_factory(replace(fast_config, pregenerate_full_size=False, grid_cell_size=100))
    controller.load_files([make_image_file(size=(10, 10))])
    controller.set_layout_mode(PuzzleMode.GRID9).result(timeout=TIMEOUT)
    controller.wait_for_idle(TIMEOUT)

    before = buffer_metrics.live
    path = controller.save(ensure_durable=True)
    with Image.open(path) as saved:
        assert saved.size == (300, 300)
    # The composite is released once written
    assert buffer_metrics.live == before


def test_save_without_tiles_raises_export_error(controller_factory):
    statuses = []
    controller = controller_factory(on_status=statuses.append)
    with pytest.raises(ExportError):
        controller.save()
    assert statuses[-1].startswith("Save failed")


def test_save_failure_reports_category(controller_factory, make_image_file, monkeypatch):
    statuses = []
    controller = controller_factory(on_status=statuses.append)
    controller.load_files([make_image_file()])

    def disk_full(*args, **kwargs):
        raise OSError("No space left on device")

    monkeypatch.setattr(controller._exporter, "save", disk_full)
    before = buffer_metrics.live
    with pytest.raises(ExportError) as excinfo:
        controller.save()
    assert excinfo.value.category.value == "io"
    assert "disk" in statuses[-1]
    assert buffer_metrics.live == before


def test_undo_redo_restore_clones(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(), make_image_file()])
    controller.load_files([make_image_file()])
    assert len(controller.tiles) == 3
    third = controller.tiles[2]

    assert controller.undo() is True
    assert len(controller.tiles) == 2
    assert third.disposed

    assert controller.redo() is True
    assert len(controller.tiles) == 3
    assert controller.redo() is False

    assert controller.undo() and controller.undo()
    assert controller.tiles == []
    assert controller.can_undo is False
    assert controller.undo() is False


def test_undo_after_preview_refreshes_without_leaking(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file()])
    controller.load_files([make_image_file()])
    _preview(controller)

    assert controller.undo()
    controller.wait_for_idle(TIMEOUT)
    assert controller.session.preview is not None
    assert controller.session.preview.size == (40, 30)


def test_remove_all_resets_everything(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(), make_image_file()])
    _preview(controller)
    old_session = controller.session
    old_tiles = controller.tiles

    controller.remove_all()

    assert controller.tiles == []
    assert controller.session is not old_session
    assert all(tile.disposed for tile in old_tiles)
    assert old_session.preview is None and old_session.composite is None
    assert len(controller.cache) == 0
    assert controller.can_undo is False
    assert controller.can_redo is False
    assert controller.preview_generated is False


def test_move_tile_sets_reorder_warning_after_preview(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(size=(10 + i, 10)) for i in range(3)])
    controller.move_tile(0, 2)
    assert [t.pixels.width for t in controller.tiles] == [11, 12, 10]
    assert controller.reorder_warning is False

    _preview(controller)
    controller.move_tile(2, 0)
    assert controller.reorder_warning is True
    with pytest.raises(IndexError):
        controller.move_tile(0, 5)


def test_only_selected_tiles_are_composed(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(size=(40, 30)), make_image_file(size=(80, 30))])
    controller.set_selected(0, False)
    assert _preview(controller) == (80, 30)


def test_remove_tile_disposes_it(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(), make_image_file()])
    doomed = controller.tiles[0]
    controller.remove_tile(0)
    assert doomed.disposed
    assert len(controller.tiles) == 1
    assert controller.undo()
    assert len(controller.tiles) == 2


def test_pasted_image_is_added(controller_factory):
    controller = controller_factory()
    with Image.new("RGB", (16, 9), (1, 2, 3)) as bitmap:
        asset = controller.load_pasted_image(bitmap)
    assert controller.tiles == [asset]
    assert controller.load_pasted_image(b"garbage") is None
    assert len(controller.tiles) == 1


def test_diagnostics_and_cache_management(controller_factory, make_image_file):
    controller = controller_factory()
    controller.load_files([make_image_file(size=(300, 300))])
    # Decoding alone stores nothing; the cache holds shrunken preview tiles
    assert len(controller.cache) == 0
    _preview(controller)
    snapshot = controller.diagnostics()
    assert snapshot.rss_bytes > 0
    assert snapshot.cache.entries == len(controller.cache) == 1

    controller.clear_cache()
    assert len(controller.cache) == 0


def test_dispose_releases_all_buffers(fast_config, make_image_file):
    paths = [make_image_file(), make_image_file()]
    before = buffer_metrics.live
    controller = PuzzleController(fast_config)
    controller.load_files(paths)
    _preview(controller)
    controller.undo()

    controller.dispose()
    controller.dispose()

    assert buffer_metrics.live == before
    with pytest.raises(SessionDisposedError):
        controller.load_files(paths)
