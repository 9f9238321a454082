from pathlib import Path

import pytest

import url2md.cli as cli
import url2md.core as core


PAGES = {
    "https://example.com/guide/install.html": (
        "<html><head><title>Install Guide</title></head><body>"
        '<p class="pToC_Subhead1">Installing</p>'
        "<p>Run the installer.</p>"
        '<p><img src="/media/step1.png" alt="Step 1"/></p>'
        '<p><img src="/media/note_icon.png" alt="Note"/></p>'
        "</body></html>"
    ),
    "https://example.com/guide/upgrade.html": (
        "<html><head><title>Upgrade: v1/v2</title></head><body>"
        "<h2>Upgrading</h2>"
        '<p><img src="/media/step1.png" alt="Step 1 again"/></p>'
        "</body></html>"
    ),
}


def _fake_fetch(url, timeout):
    from bs4 import BeautifulSoup

    if url not in PAGES:
        raise OSError(f"404 for {url}")
    soup = BeautifulSoup(PAGES[url], "html.parser")
    return core.FetchedPage(
        url=url,
        html=PAGES[url],
        title=soup.title.get_text(strip=True),
        image_urls=core.extract_image_urls(soup, url),
    )


def _fake_download(url, dest: Path, timeout):
    dest.write_bytes(b"IMG " + url.encode("utf-8"))


def _write_urls(tmp_path: Path, lines) -> Path:
    path = tmp_path / "urls.txt"
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


@pytest.fixture
def offline(monkeypatch):
    monkeypatch.setattr(core, "fetch_page", _fake_fetch)
    monkeypatch.setattr(core, "download_file", _fake_download)


def test_version_flags_print_version(capsys):
    assert cli.main(["--version"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == cli.__version__

    assert cli.main(["--ver"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == cli.__version__


def test_help_and_no_args_show_usage(capsys):
    assert cli.main([]) == 0
    out = capsys.readouterr().out
    assert "url2md" in out
    assert cli.__version__ in out

    assert cli.main(["--help"]) == 0
    out = capsys.readouterr().out
    assert "--input" in out


def test_unknown_option_prints_usage(capsys):
    assert cli.main(["--bogus"]) == 2
    assert "Usage:" in capsys.readouterr().out


def test_missing_input_option_is_rejected(capsys):
    assert cli.main(["--verbose"]) == core.EXIT_INVALID_ARGS
    assert "--input is required" in capsys.readouterr().err


def test_missing_input_file_is_rejected(tmp_path, capsys):
    assert cli.main(["--input", str(tmp_path / "missing.txt")]) == core.EXIT_INVALID_ARGS
    assert "Input file not found" in capsys.readouterr().err


@pytest.mark.parametrize("args", [["--workers", "0"], ["--workers", "6"], ["--timeout", "-1"]])
def test_invalid_numeric_options(tmp_path, capsys, args):
    urls = _write_urls(tmp_path, ["https://example.com/a"])
    assert cli.main(["--input", str(urls), *args]) == core.EXIT_INVALID_ARGS
    assert "Invalid value" in capsys.readouterr().err


def test_output_path_must_be_a_directory(tmp_path, capsys):
    urls = _write_urls(tmp_path, ["https://example.com/a"])
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x", encoding="utf-8")

    assert cli.main(["--input", str(urls), "--out-dir", str(not_a_dir)]) == core.EXIT_OUTPUT_DIR
    assert "not a directory" in capsys.readouterr().err


def test_empty_input_file_exits_without_work(monkeypatch, tmp_path, capsys):
    import url2md.pool as pool

    def no_batch(*args, **kwargs):
        raise AssertionError("run_batch must not be called")

    monkeypatch.setattr(pool, "run_batch", no_batch)
    urls = tmp_path / "urls.txt"
    urls.write_text("", encoding="utf-8")
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(urls), "--out-dir", str(out_dir)]) == 0
    out = capsys.readouterr().out
    assert "File is empty. Exiting..." in out
    assert "All files have been saved" not in out
    assert not out_dir.exists()


def test_convert_batch_creates_markdown_and_images(offline, tmp_path, capsys):
    urls = _write_urls(tmp_path, PAGES.keys())
    out_dir = tmp_path / "out"

    result = cli.main(["--input", str(urls), "--out-dir", str(out_dir), "--host-root", "https://docs.example.com"])
    assert result == 0

    install_md = (out_dir / "InstallGuide.md").read_text(encoding="utf-8")
    assert "# " in install_md
    assert "Installing" in install_md
    assert "Run the installer." in install_md
    assert "![step1.png](https://docs.example.com/media/step1.png)" in install_md

    upgrade_md = (out_dir / "Upgradev1v2.md").read_text(encoding="utf-8")
    assert "## Upgrading" in upgrade_md

    saved = sorted(p.name for p in (out_dir / "images").iterdir())
    assert saved == ["step1(1).png", "step1.png"]

    out = capsys.readouterr().out
    assert f"All files have been saved to: {out_dir}" in out


def test_per_task_image_names_flag(offline, tmp_path):
    urls = _write_urls(tmp_path, PAGES.keys())
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(urls), "--out-dir", str(out_dir), "--per-task-image-names", "--workers", "1"]) == 0

    assert [p.name for p in (out_dir / "images").iterdir()] == ["step1.png"]


def test_failed_pages_do_not_change_exit_code(offline, tmp_path, capsys):
    urls = _write_urls(
        tmp_path,
        ["https://example.com/guide/install.html", "https://example.com/missing.html", "garbage"],
    )
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(urls), "--out-dir", str(out_dir)]) == 0

    captured = capsys.readouterr()
    assert (out_dir / "InstallGuide.md").exists()
    assert "2 of 3 page(s) failed" in captured.out
    assert "Conversion failed for https://example.com/missing.html" in captured.err
    assert "Conversion failed for garbage" in captured.err


def test_timeout_zero_disables_network_timeout(monkeypatch, tmp_path):
    import url2md.pool as pool

    seen = {}

    def fake_run_batch(urls, config, notify=None):
        seen["urls"] = list(urls)
        seen["config"] = config
        return pool.BatchResult(output_dir=config.output_dir)

    monkeypatch.setattr(pool, "run_batch", fake_run_batch)
    urls = _write_urls(tmp_path, ["https://example.com/a", "https://example.com/b"])

    assert cli.main(["--input", str(urls), "--out-dir", str(tmp_path), "--timeout", "0", "--workers", "2"]) == 0

    config = seen["config"]
    assert seen["urls"] == ["https://example.com/a", "https://example.com/b"]
    assert config.timeout is None
    assert config.max_workers == 2
    assert config.shared_image_names is True
    assert not hasattr(config, "verbose")
    assert not hasattr(config, "debug")


def test_verbose_logs_progress_with_failure_count(offline, tmp_path, capsys):
    urls = _write_urls(tmp_path, ["https://example.com/guide/install.html", "https://example.com/missing.html"])
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(urls), "--out-dir", str(out_dir), "--workers", "1", "--verbose"]) == 0

    err = capsys.readouterr().err
    assert "INFO: [==========          ] 1/2 pages | https://example.com/guide/install.html" in err
    assert "INFO: [====================] 2/2 pages, 1 failed | https://example.com/missing.html" in err


def test_progress_is_quiet_without_verbose(offline, tmp_path, capsys):
    urls = _write_urls(tmp_path, ["https://example.com/guide/install.html"])

    assert cli.main(["--input", str(urls), "--out-dir", str(tmp_path / "out")]) == 0

    assert "pages |" not in capsys.readouterr().err
