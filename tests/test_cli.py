from io import BytesIO
import json
import signal
import zipfile

import pytest

from fotopim.cli import batch_process
from fotopim.models.transform_settings import TransformSettings
from fotopim.pipeline.batch_orchestrator import BatchOrchestrator


@pytest.fixture
def photos(tmp_path, monkeypatch, make_pixels, png_bytes):
    """Folder with two product shots, working directory and settings file under tmp_path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SETTINGS_PATH", str(tmp_path / "settings.json"))
    folder = tmp_path / "photos"
    folder.mkdir()
    image = png_bytes(make_pixels(60, 40, rect=(10, 5, 49, 34)))
    (folder / "front.png").write_bytes(image)
    (folder / "room_ls.png").write_bytes(image)
    return folder


def zip_names(path):
    with zipfile.ZipFile(BytesIO(path.read_bytes())) as zf:
        return zf.namelist()


def test_zip_mode_with_naming_and_lifestyle(photos, tmp_path):
    target = tmp_path / "out.zip"

    code = batch_process.main([
        str(photos), "--base-name", "Fotel Łódź", "--start-number", "P01",
        "--lifestyle", "*_ls.png", "--zip", str(target),
    ])

    assert code == 0
    assert zip_names(target) == ["Fotel-Lodz-P01.jpg", "Fotel-Lodz-lifestyle-P02.jpg"]


def test_default_archive_lands_in_working_directory(photos, tmp_path):
    assert batch_process.main([str(photos), "--base-name", "x"]) == 0
    assert zip_names(tmp_path / batch_process.ARCHIVE_NAME) == ["x-1.jpg", "x-2.jpg"]


def test_output_mode_keeps_original_names(photos, tmp_path):
    code = batch_process.main([str(photos), "--output", str(tmp_path / "out")])

    assert code == 0
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["front.jpg", "room_ls.jpg"]


def test_failed_item_exits_one(photos, tmp_path):
    (photos / "broken.jpg").write_bytes(b"not a jpeg")

    code = batch_process.main([str(photos), "--output", str(tmp_path / "out")])

    assert code == 1
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["front.jpg", "room_ls.jpg"]


def test_empty_folder_exits_one(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "empty").mkdir()

    assert batch_process.main([str(tmp_path / "empty")]) == 1


@pytest.mark.parametrize("extra", [["--threshold", "300"], ["--max-mb", "-1"]])
def test_bad_options_exit_two(photos, extra):
    assert batch_process.main([str(photos), *extra]) == 2


def test_missing_folder_exits_two(photos, tmp_path):
    assert batch_process.main([str(tmp_path / "nowhere")]) == 2


def test_ctrl_c_cancels_after_current_file(photos, tmp_path, monkeypatch):
    class InterruptedOrchestrator(BatchOrchestrator):
        def run(self, job, on_progress=None):
            def interrupt_after_first(processed, total, label):
                on_progress(processed, total, label)
                signal.raise_signal(signal.SIGINT)
            return super().run(job, interrupt_after_first)

    monkeypatch.setattr(batch_process, "BatchOrchestrator", InterruptedOrchestrator)
    target = tmp_path / "out.zip"
    handler_before = signal.getsignal(signal.SIGINT)

    code = batch_process.main([str(photos), "--base-name", "x", "--zip", str(target)])

    assert code == 130
    assert zip_names(target) == ["x-1.jpg"]
    assert signal.getsignal(signal.SIGINT) is handler_before


def test_resolve_settings_overrides_only_given_options():
    args = batch_process.build_parser().parse_args(["in", "--margin", "8", "--no-min-size", "--max-mb", "1.5"])
    base = TransformSettings(max_side=1200, use_max_side=False)

    settings = batch_process.resolve_settings(args, base)

    assert (settings.margin, settings.max_side, settings.max_mb) == (8, 1200, 1.5)
    assert not settings.use_min_size
    assert not settings.use_max_side
    assert settings.use_margin


def test_save_settings_persists_them(photos, tmp_path):
    batch_process.main([str(photos), "--margin", "4", "--no-max-mb", "--save-settings", "--output", "out"])

    stored = json.loads((tmp_path / "settings.json").read_text())
    assert stored["margin"] == 4 and stored["useMaxMb"] is False
