from __future__ import annotations

import json
from pathlib import Path

import pytest
from PIL import Image

from eventroll.cli import _expand_inputs, build_parser, main


@pytest.fixture
def local_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    store_dir = tmp_path / "store"
    monkeypatch.setenv("EVENTROLL_STORE", "local")
    monkeypatch.setenv("EVENTROLL_LOCAL_STORE_DIR", str(store_dir))
    monkeypatch.setenv("EVENTROLL_PUBLIC_BASE_URL", "https://photos.example.test")
    monkeypatch.setenv("EVENTROLL_PREVIEW_DIR", str(tmp_path / "previews"))
    monkeypatch.delenv("EVENTROLL_LOG_DIR", raising=False)
    monkeypatch.delenv("EVENTROLL_STORE_MAX_OBJECT_BYTES", raising=False)
    return store_dir


def _make_jpeg(path: Path, size: tuple[int, int] = (640, 480)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, (120, 160, 200)).save(path, format="JPEG", quality=92)
    return path


def test_build_parser():
    parser = build_parser()
    assert parser.prog == "eventroll"
    with pytest.raises(SystemExit):
        parser.parse_args([])
    args = parser.parse_args(["upload", "--event", "party", "a.jpg", "b.jpg"])
    assert args.files == ["a.jpg", "b.jpg"]
    assert args.store is None


def test_expand_inputs(tmp_path: Path):
    _make_jpeg(tmp_path / "dir" / "b.jpg")
    _make_jpeg(tmp_path / "dir" / "a.jpg")
    (tmp_path / "dir" / "notes.txt").write_text("skip me")
    single = _make_jpeg(tmp_path / "single.jpg")

    paths = _expand_inputs([str(tmp_path / "dir"), str(single)])

    assert [p.name for p in paths] == ["a.jpg", "b.jpg", "single.jpg"]


def test_upload_then_gallery(local_env: Path, tmp_path: Path, capsys: pytest.CaptureFixture):
    photos = [_make_jpeg(tmp_path / "in" / f"IMG_{i}.jpg") for i in range(4)]
    status_json = tmp_path / "status.json"
    gallery_html = tmp_path / "gallery.html"

    with pytest.raises(SystemExit) as e:
        main(
            [
                "upload",
                "--quiet",
                "--event",
                "party",
                "--status-json",
                str(status_json),
                "--gallery-html",
                str(gallery_html),
                *[str(p) for p in photos],
            ]
        )
    assert e.value.code == 0

    urls = capsys.readouterr().out.split()
    assert len(urls) == 4
    assert all(u.startswith("https://photos.example.test/party/") for u in urls)
    assert len(list((local_env / "party").iterdir())) == 4

    status = json.loads(status_json.read_text("utf-8"))
    assert status["counts"]["complete"] == 4
    assert "4 photos" in gallery_html.read_text("utf-8")

    with pytest.raises(SystemExit) as e2:
        main(["gallery", "--quiet", "--event", "party"])
    assert e2.value.code == 0
    listed = capsys.readouterr().out.split()
    assert sorted(listed) == sorted(urls)


def test_upload_reports_rejections(local_env: Path, tmp_path: Path, capsys: pytest.CaptureFixture):
    ok = _make_jpeg(tmp_path / "in" / "ok.jpg")
    huge = tmp_path / "in" / "huge.jpg"
    huge.write_bytes(b"\0" * (11 * 1024 * 1024))

    with pytest.raises(SystemExit) as e:
        main(["upload", "--quiet", "--event", "party", str(ok), str(huge)])

    assert e.value.code == 1
    assert len(capsys.readouterr().out.split()) == 1


def test_upload_missing_file(local_env: Path, tmp_path: Path):
    with pytest.raises(SystemExit) as e:
        main(["upload", "--quiet", "--event", "party", str(tmp_path / "nope.jpg")])
    assert e.value.code == 2


def test_upload_invalid_event(local_env: Path, tmp_path: Path):
    photo = _make_jpeg(tmp_path / "in" / "ok.jpg")
    with pytest.raises(SystemExit) as e:
        main(["upload", "--quiet", "--event", "a/b", str(photo)])
    assert e.value.code == 2


def test_gallery_writes_html(local_env: Path, tmp_path: Path):
    out = tmp_path / "site" / "index.html"
    with pytest.raises(SystemExit) as e:
        main(["gallery", "--quiet", "--event", "empty-party", "--out", str(out)])
    assert e.value.code == 0
    assert "No photos uploaded yet" in out.read_text("utf-8")


def test_doctor_command(local_env: Path, capsys: pytest.CaptureFixture):
    with pytest.raises(SystemExit) as e:
        main(["doctor", "--skip-store"])
    assert e.value.code == 0
    out = capsys.readouterr().out
    assert "[OK] config" in out
    assert "store_access" not in out
