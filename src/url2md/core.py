"""Core conversion pipeline for url2md."""

from __future__ import annotations

import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Pattern, Tuple
from urllib.parse import urljoin, urlparse

if TYPE_CHECKING:
    from .images import FilenameCounter

LOG = logging.getLogger("url2md")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_DIR = 7

CONCURRENCY_CAP = 5
DEFAULT_HOST_ROOT = "https://www.cisco.com"
DEFAULT_IMAGES_DIRNAME = "images"
DEFAULT_OUTPUT_NAME = "output"
DEFAULT_TIMEOUT = 30.0
USER_AGENT = "url2md (+https://pypi.org/project/url2md/)"


@dataclass
class ConversionConfig:
    output_dir: Path = field(default_factory=Path.cwd)
    images_dirname: str = DEFAULT_IMAGES_DIRNAME
    host_root: str = DEFAULT_HOST_ROOT
    max_workers: int = CONCURRENCY_CAP
    timeout: Optional[float] = DEFAULT_TIMEOUT
    shared_image_names: bool = True


@dataclass(frozen=True)
class ConversionTask:
    url: str
    index: int


@dataclass
class FetchedPage:
    url: str
    html: str
    title: str
    image_urls: List[str]


@dataclass
class TaskResult:
    url: str
    index: int
    output_path: Optional[Path] = None
    images: List[Path] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.output_path is not None


Fetcher = Callable[[str, Optional[float]], FetchedPage]
Downloader = Callable[[str, Path, Optional[float]], None]
Renderer = Callable[[str], str]


_LOG_FORMAT = "%(levelname)s: %(message)s"


def setup_logging(verbose: bool, debug: bool) -> None:
    """Route url2md records to stderr: WARNING by default, INFO with verbose, DEBUG with debug."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        LOG.addHandler(logging.StreamHandler())
    for handler in LOG.handlers:
        handler.setLevel(level)
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))


def progress_line(done: int, total: int, failed: int = 0, width: int = 20) -> str:
    if total <= 0:
        return "[no pages]"
    filled = min(width, int(width * max(0, min(done, total)) / total))
    bar = "=" * filled + " " * (width - filled)
    line = f"[{bar}] {done}/{total} pages"
    if failed:
        line += f", {failed} failed"
    return line


def log_progress(done: int, total: int, failed: int, url: str) -> None:
    LOG.info("%s | %s", progress_line(done, total, failed), url)


# Markup normalization. Rule 1 unwraps the known paragraph classes and leaves
# the class token in the text; the bare-token rules below rely on that.
_TAGGED_PARAGRAPH_CLASSES = "MsoBodyTextIndent|pNoteCMT|pBullet|pBody|pNumList1CMT|pToC_Subhead[1-6]"

NormalizationRule = Tuple[Pattern[str], str]

NORMALIZATION_RULES: Tuple[NormalizationRule, ...] = (
    (re.compile(rf'<p\s+class="({_TAGGED_PARAGRAPH_CLASSES})">(.*?)</p>'), "\\1 \\2\n"),
    (re.compile(r"MsoBodyTextIndent"), "<br> > "),
    (re.compile(r'<p\s+class="pNoteCMT">(.*?)</p>'), "> [!\\1]\n"),
    (re.compile(r"pBullet"), "- "),
    (re.compile(r"pBody"), ""),
    (re.compile(r"pNumList1CMT"), ""),
    (re.compile(r"pToC_Subhead1"), "<br># "),
    (re.compile(r"pToC_Subhead2"), "<br>## "),
    (re.compile(r"pToC_Subhead3"), "<br>### "),
    (re.compile(r"pSubhead3CMT"), "<br>### "),
    (re.compile(r"pToC_Subhead4"), "<br>#### "),
    (re.compile(r"pToC_Subhead5"), "<br>##### "),
    (re.compile(r"pToC_Subhead6"), "<br>###### "),
)


def normalize_markup(html: str, rules: Tuple[NormalizationRule, ...] = NORMALIZATION_RULES) -> str:
    text = html or ""
    for pattern, replacement in rules:
        text = pattern.sub(replacement, text)
    return text


IMG_LINK_RE = re.compile(r"!\[.*?\]\(([^)]*)\)")


def _canonical_image_url(path: str, root: str) -> str:
    parsed = urlparse(path)
    if parsed.scheme:
        return path
    if parsed.netloc:
        return urljoin(root + "/", path)
    if path.startswith("/"):
        return f"{root}{path}"
    return urljoin(root + "/", path)


def rewrite_image_links(md: str, host_root: str = DEFAULT_HOST_ROOT) -> str:
    """Point every Markdown image link at ``host_root``.

    ``![alt](/img/foo.png)`` becomes ``![foo.png](<host_root>/img/foo.png)``;
    paths without a leading slash are resolved against ``<host_root>/``.
    Links that already carry a scheme keep their URL and only get the
    file name as alt text.
    """
    root = host_root.rstrip("/")

    def repl(match: re.Match) -> str:
        path = match.group(1)
        name = posixpath.basename(path.split("?", 1)[0].split("#", 1)[0])
        return f"![{name}]({_canonical_image_url(path, root)})"

    return IMG_LINK_RE.sub(repl, md)


_UNSAFE_NAME_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


def output_name(title: Optional[str]) -> str:
    name = _UNSAFE_NAME_CHARS_RE.sub("", (title or "").strip())
    return name or DEFAULT_OUTPUT_NAME


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def ensure_images_dir(output_dir: Path, dirname: str = DEFAULT_IMAGES_DIRNAME) -> Path:
    images_dir = output_dir / dirname
    images_dir.mkdir(parents=True, exist_ok=True)
    return images_dir


def validate_url(line: str) -> str:
    url = (line or "").strip()
    if not url:
        raise ValueError("empty input line")
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"not an absolute http(s) URL: {url!r}")
    return url


def _new_session():
    try:
        import requests  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"requests not available: {exc}") from exc

    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def extract_image_urls(soup, base_url: str) -> List[str]:
    urls: List[str] = []
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src:
            continue
        absolute = urljoin(base_url, src)
        if urlparse(absolute).scheme in {"http", "https"}:
            urls.append(absolute)
    return urls


def decode_html(content: bytes, header_charset: Optional[str] = None) -> str:
    """Decode page bytes the way a browser would.

    A charset from the ``Content-Type`` header wins, then a BOM, then the
    document's own ``<meta charset>``. Without any of those UTF-8 is tried
    before falling back to detection.
    """
    try:
        from bs4 import UnicodeDammit  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc

    dammit = UnicodeDammit(
        content,
        known_definite_encodings=[header_charset] if header_charset else [],
        user_encodings=["utf-8"],
        is_html=True,
    )
    if dammit.unicode_markup is None:
        return content.decode("utf-8", errors="replace")
    return dammit.unicode_markup


def _header_charset(response) -> Optional[str]:
    content_type = response.headers.get("Content-Type", "")
    for part in content_type.split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value.strip():
            return value.strip().strip('"').strip("'")
    return None


def fetch_page(url: str, timeout: Optional[float] = DEFAULT_TIMEOUT) -> FetchedPage:
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc

    with _new_session() as session:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
        # requests falls back to ISO-8859-1 when the header has no charset
        html = decode_html(response.content, _header_charset(response))
        final_url = response.url or url

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title is not None else ""
    return FetchedPage(url=final_url, html=html, title=title, image_urls=extract_image_urls(soup, final_url))


def download_file(url: str, dest: Path, timeout: Optional[float] = DEFAULT_TIMEOUT) -> None:
    with _new_session() as session:
        with session.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with dest.open("wb") as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)


def render_markdown(html: str) -> str:
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc

    try:
        from markdownify import markdownify as md_convert  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"markdownify not available: {exc}") from exc

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    content = soup.body if soup.body is not None else soup
    return md_convert(str(content), heading_style="ATX", escape_misc=False)


def convert_url(
    task: ConversionTask,
    config: ConversionConfig,
    *,
    counter: Optional["FilenameCounter"] = None,
    fetch: Optional[Fetcher] = None,
    render: Optional[Renderer] = None,
    download: Optional[Downloader] = None,
) -> TaskResult:
    """Convert one page to ``<output_dir>/<title>.md``.

    Runs fetch, image extraction, markup normalization, rendering, link
    rewriting and the final write in that order. Errors propagate; the
    worker pool is responsible for isolating them.
    """
    from .images import FilenameCounter, save_page_images

    fetch = fetch or fetch_page
    render = render or render_markdown
    download = download or download_file

    url = validate_url(task.url)
    LOG.debug("Fetching %s", url)
    page = fetch(url, config.timeout)

    if counter is None:
        counter = FilenameCounter()
    images_dir = ensure_images_dir(config.output_dir, config.images_dirname)
    saved = save_page_images(page, images_dir, counter, download=download, timeout=config.timeout)

    normalized = normalize_markup(page.html)
    md_text = render(normalized)
    md_text = rewrite_image_links(md_text, config.host_root)

    md_path = config.output_dir / f"{output_name(page.title)}.md"
    safe_write_text(md_path, md_text)
    LOG.info("Markdown saved: %s", os.path.abspath(md_path))
    return TaskResult(url=url, index=task.index, output_path=md_path, images=saved)
