#!/usr/bin/env python3
"""
mbox-to-html - Convert MBOX email archives to static HTML

Every .mbox archive is streamed, split into messages on "From " delimiter
lines, and written next to the input as <archive>.mbox.html with one card
per email. Archives of any size are processed with bounded memory: the
input is read in chunks and each rendered message is flushed to disk as
soon as it is parsed.

Usage:
  mbox-to-html ./emails.mbox
  mbox-to-html ./mail-archive/ --force
"""

import argparse
import html
import logging
import os
import re
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from email import policy
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import BinaryIO, Iterable, Iterator, List, Optional, Tuple

from dateutil import parser as date_parser
from tqdm import tqdm

# Version
__version__ = "1.0.0"

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1

# Streaming
DELIMITER = b"\nFrom "
CHUNK_SIZE = 64 * 1024
PROGRESS_INTERVAL = 100

# Naming
MBOX_EXTENSION = ".mbox"
OUTPUT_SUFFIX = ".html"

DEFAULT_WORKERS = 1

# Logger setup
logger = logging.getLogger("mbox_to_html")


def setup_logging(verbose: int = 0, log_file: Optional[str] = None, quiet: bool = False) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    logger.handlers = []
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level)


# =============================================================================
# MESSAGE SPLITTER
# =============================================================================

class MessageSplitter:
    """Incremental mbox splitter.

    Bytes are fed in chunks of any size. A message ends right after the
    newline that precedes a "From " line, so the slices returned by feed()
    and close() concatenate back to the exact input.
    """

    def __init__(self, max_pending: Optional[int] = None):
        self.max_pending = max_pending
        self._buffer = bytearray()
        self._search_from = 0
        self._warned = False

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet emitted."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """Append a chunk and return an iterator over every message it completes.

        The chunk is buffered immediately, whether or not the result is consumed.
        """
        messages = []
        if not chunk:
            return iter(messages)
        self._buffer += chunk

        while True:
            pos = self._buffer.find(DELIMITER, self._search_from)
            if pos == -1:
                # A delimiter may straddle the next chunk boundary
                self._search_from = max(0, len(self._buffer) - len(DELIMITER) + 1)
                break

            end = pos + 1
            message = bytes(self._buffer[:end])
            del self._buffer[:end]
            self._search_from = 0
            self._warned = False
            if message:
                messages.append(message)

        if self.max_pending and not self._warned and len(self._buffer) > self.max_pending:
            logger.warning(f"Pending buffer exceeds {self.max_pending} bytes without a message boundary")
            self._warned = True

        return iter(messages)

    def close(self) -> Iterator[bytes]:
        """Return the trailing message, if any, and reset the splitter."""
        messages = []
        if self._buffer:
            messages.append(bytes(self._buffer))
            self._buffer.clear()
        self._search_from = 0
        self._warned = False
        return iter(messages)


def split_messages(chunks: Iterable[bytes], max_pending: Optional[int] = None) -> Iterator[bytes]:
    """Lazily split a stream of byte chunks into raw messages."""
    splitter = MessageSplitter(max_pending=max_pending)
    for chunk in chunks:
        yield from splitter.feed(chunk)
    yield from splitter.close()


def iter_chunks(fh: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Read a binary file handle in fixed-size chunks."""
    while True:
        chunk = fh.read(chunk_size)
        if not chunk:
            break
        yield chunk


# =============================================================================
# MESSAGE PARSER
# =============================================================================

class MessageParseError(Exception):
    """Raised when a raw message cannot be turned into a ParsedMessage."""


@dataclass
class Sender:
    address: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ParsedMessage:
    """Structured view of one email. Every field is optional."""

    subject: Optional[str] = None
    sender: Optional[Sender] = None
    date: Optional[str] = None
    html: Optional[str] = None
    text: Optional[str] = None
    headers: List[Tuple[str, str]] = field(default_factory=list)


def parse_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse email date string to datetime object."""
    if not date_str:
        return None
    try:
        return parsedate_to_datetime(date_str)
    except (ValueError, TypeError, IndexError):
        try:
            return date_parser.parse(date_str)
        except (ValueError, TypeError, OverflowError):
            return None


def _clean(value: Optional[str]) -> Optional[str]:
    """Replace undecodable 8-bit bytes (kept as surrogates by the parser) with U+FFFD."""
    if value is None:
        return None
    return value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def _part_text(part, encoding: str = "utf-8") -> Optional[str]:
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError):
        data = part.get_payload(decode=True) or b""
        content = data.decode(encoding, errors="replace")
    if isinstance(content, bytes):
        content = content.decode(encoding, errors="replace")
    return _clean(content) or None


def _parse_sender(message) -> Optional[Sender]:
    header = message.get("from")
    if header is None:
        return None
    addresses = getattr(header, "addresses", ())
    if addresses:
        first = addresses[0]
        return Sender(address=_clean(first.addr_spec) or None, name=_clean(first.display_name) or None)
    raw = _clean(str(header)).strip()
    return Sender(address=raw) if raw else None


def parse_message(raw: bytes) -> ParsedMessage:
    """Parse raw RFC 5322 bytes into a ParsedMessage."""
    try:
        message = BytesParser(policy=policy.default).parsebytes(raw)

        subject = message.get("subject")
        date = message.get("date")

        html_part = message.get_body(preferencelist=("html",))
        text_part = message.get_body(preferencelist=("plain",))

        return ParsedMessage(
            subject=_clean(str(subject)) if subject is not None else None,
            sender=_parse_sender(message),
            date=_clean(str(date)) if date is not None else None,
            html=_part_text(html_part) if html_part is not None else None,
            text=_part_text(text_part) if text_part is not None else None,
            headers=[(_clean(key), _clean(str(value))) for key, value in message.items()],
        )
    except Exception as e:
        raise MessageParseError(str(e) or e.__class__.__name__) from e


# =============================================================================
# MESSAGE RENDERER
# =============================================================================

HTML_HEADER = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Email Archive</title>
    <style>
        :root {
            --bg-color: #f4f4f9;
            --card-bg: #ffffff;
            --text-color: #333;
            --meta-color: #666;
            --border-color: #e0e0e0;
            --accent-color: #007bff;
        }
        body {
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
            background-color: var(--bg-color);
            color: var(--text-color);
            margin: 0;
            padding: 20px;
            line-height: 1.6;
        }
        .container { max-width: 800px; margin: 0 auto; }
        .email-card {
            background-color: var(--card-bg);
            border-radius: 8px;
            box-shadow: 0 2px 5px rgba(0,0,0,0.05);
            margin-bottom: 30px;
            overflow: hidden;
            border: 1px solid var(--border-color);
        }
        .email-header {
            padding: 20px;
            border-bottom: 1px solid var(--border-color);
            background-color: #fafafa;
        }
        .email-subject { font-size: 1.25rem; font-weight: 600; margin: 0 0 10px 0; color: #1a1a1a; }
        .email-meta { font-size: 0.9rem; color: var(--meta-color); display: flex; flex-wrap: wrap; gap: 15px; }
        .meta-item { display: flex; align-items: center; }
        .meta-label { font-weight: 500; margin-right: 5px; }
        .email-body { padding: 20px; overflow-x: auto; }
        .email-body img { max-width: 100%; height: auto; }
        .email-body blockquote { margin: 0; padding-left: 15px; border-left: 3px solid #ddd; color: #555; }
        .headers-details { margin-top: 15px; font-size: 0.85rem; border-top: 1px dashed #eee; padding-top: 10px; }
        .headers-details summary { cursor: pointer; color: var(--accent-color); margin-bottom: 10px; outline: none; }
        .headers-table { width: 100%; border-collapse: collapse; }
        .headers-table td { padding: 4px 0; vertical-align: top; }
        .header-key { font-weight: 600; color: #555; width: 150px; padding-right: 10px; }
        .header-value { color: #333; word-break: break-all; }
    </style>
</head>
<body>
    <div class="container">
        <h1>Email Archive</h1>
"""

HTML_FOOTER = """
    </div>
</body>
</html>
"""

_DIGIT_RE = re.compile(r"\d")


def escape_html(text: str) -> str:
    """Escape &, < and > for use in an HTML text node."""
    return html.escape(text, quote=False)


def format_sender(sender: Optional[Sender]) -> str:
    if sender is None or not (sender.name or sender.address):
        return "(Unknown Sender)"
    if sender.name:
        if sender.address:
            return f"{escape_html(sender.name)} &lt;{escape_html(sender.address)}&gt;"
        return escape_html(sender.name)
    return escape_html(sender.address)


def format_date(date_str: Optional[str]) -> str:
    """Render a date header in the local timezone and locale."""
    parsed = parse_date(date_str)
    if parsed is None:
        return "(No Date)"
    try:
        return escape_html(parsed.astimezone().strftime("%c"))
    except (ValueError, OverflowError, OSError):
        return "(No Date)"


def is_envelope_header(key: str, value: str) -> bool:
    """Stray mbox envelope lines parsed as a "From ..." header carrying a timestamp."""
    return key.lower().startswith("from ") and bool(_DIGIT_RE.search(value))


def render_headers(headers: List[Tuple[str, str]]) -> str:
    rows = [
        f"""
                <tr>
                    <td class="header-key">{escape_html(key)}:</td>
                    <td class="header-value">{escape_html(value)}</td>
                </tr>"""
        for key, value in headers
        if not is_envelope_header(key, value)
    ]
    if not rows:
        return ""
    return f"""
                <details class="headers-details">
                    <summary>Detailed Headers</summary>
                    <table class="headers-table">{"".join(rows)}
                    </table>
                </details>"""


def render_body(message: ParsedMessage) -> str:
    if message.html:
        return f'<div class="html-content">{message.html}</div>'
    if message.text:
        return f'<pre style="white-space: pre-wrap; font-family: monospace;">{escape_html(message.text)}</pre>'
    return "<p><em>(No content)</em></p>"


def render_message(message: ParsedMessage, index: int) -> str:
    """Render one email as a self-contained HTML card."""
    subject = escape_html(message.subject) if message.subject else "(No Subject)"

    return f"""
        <div class="email-card" id="email-{index}">
            <div class="email-header">
                <h2 class="email-subject">{subject}</h2>
                <div class="email-meta">
                    <div class="meta-item"><span class="meta-label">From:</span> {format_sender(message.sender)}</div>
                    <div class="meta-item"><span class="meta-label">Date:</span> {format_date(message.date)}</div>
                </div>{render_headers(message.headers)}
            </div>
            <div class="email-body">
                {render_body(message)}
            </div>
        </div>
"""


# =============================================================================
# ARCHIVE CONVERTER
# =============================================================================

def output_path_for(mbox_path: str) -> str:
    """Output document path: the archive path with .html appended."""
    return os.path.join(os.path.dirname(mbox_path), os.path.basename(mbox_path) + OUTPUT_SUFFIX)


def convert_archive(
    mbox_path: str,
    force: bool = False,
    chunk_size: int = CHUNK_SIZE,
    show_progress: bool = False,
    quiet: bool = False,
) -> int:
    """Convert one MBOX archive to HTML and return the number of emails rendered."""
    output_path = output_path_for(mbox_path)

    if os.path.exists(output_path):
        if not force:
            if not quiet:
                print(f"Skipping {mbox_path} (HTML already exists). Use --force to overwrite.")
            logger.info(f"Skipped {mbox_path}: {output_path} exists")
            return 0
        logger.info(f"Overwriting {output_path}")

    logger.info(f"Processing {mbox_path}")

    count = 0
    index = 0
    bar = None
    if show_progress and not quiet:
        bar = tqdm(total=os.path.getsize(mbox_path), desc=os.path.basename(mbox_path),
                   unit="B", unit_scale=True, ncols=80)

    try:
        with open(mbox_path, "rb") as fh, open(output_path, "w", encoding="utf-8") as out:
            out.write(HTML_HEADER)

            for raw in split_messages(iter_chunks(fh, chunk_size), max_pending=chunk_size * 1024):
                if bar is not None:
                    bar.update(len(raw))
                try:
                    parsed = parse_message(raw)
                except MessageParseError as e:
                    logger.error(f"Error parsing email #{index} in {mbox_path}: {e}")
                    index += 1
                    continue

                out.write(render_message(parsed, index))
                index += 1
                count += 1
                if count % PROGRESS_INTERVAL == 0:
                    logger.info(f"Processed {count} emails...")

            out.write(HTML_FOOTER)
    except OSError:
        logger.error(f"I/O error while converting {mbox_path}; {output_path} may be incomplete")
        raise
    finally:
        if bar is not None:
            bar.close()

    if not quiet:
        print(f"Finished {mbox_path}: Processed {count} emails.")
        print(f"Output: {output_path}")

    return count


# =============================================================================
# ARCHIVE SET DRIVER
# =============================================================================

def find_mbox_files(root: str) -> Iterator[str]:
    """Yield .mbox files under root, recursing into subdirectories."""
    pending = [root]
    while pending:
        directory = pending.pop()
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        subdirs = []
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                subdirs.append(entry.path)
            elif entry.is_file() and os.path.splitext(entry.name)[1].lower() == MBOX_EXTENSION:
                yield entry.path

        # Reversed so the next pop() visits subdirectories in name order
        pending.extend(reversed(subdirs))


def convert_path(
    input_path: str,
    force: bool = False,
    workers: int = DEFAULT_WORKERS,
    show_progress: bool = False,
    quiet: bool = False,
) -> int:
    """Convert an archive or every archive under a directory. Returns the email total."""
    if not os.path.exists(input_path):
        raise FileNotFoundError(f"No such file or directory: {input_path}")

    if os.path.isfile(input_path):
        return convert_archive(input_path, force=force, show_progress=show_progress, quiet=quiet)

    if not os.path.isdir(input_path):
        raise ValueError("Input is not a file or directory.")

    logger.info(f"Scanning directory recursively: {input_path}")

    found = 0
    total_emails = 0

    if workers > 1:
        mbox_files = list(find_mbox_files(input_path))
        found = len(mbox_files)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            # Progress bars from parallel workers would interleave
            futures = [
                pool.submit(convert_archive, path, force, CHUNK_SIZE, False, quiet)
                for path in mbox_files
            ]
            for future in futures:
                total_emails += future.result()
    else:
        for mbox_file in find_mbox_files(input_path):
            found += 1
            total_emails += convert_archive(mbox_file, force=force, show_progress=show_progress, quiet=quiet)

    if not quiet:
        if found == 0:
            print("No .mbox files found in directory.")
        else:
            print(f"\nTotal .mbox files processed: {found}")
            print(f"Total emails converted: {total_emails}")

    return total_emails


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mbox-to-html",
        description="Convert mbox email archives to HTML",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ./emails.mbox
  %(prog)s ./mail-archive/ --force
  %(prog)s ./mail-archive/ --workers 4 --progress
"""
    )
    parser.add_argument("path", nargs="?", help="Path to an mbox file or directory containing mbox files")
    parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing HTML files")
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s v{__version__}")
    parser.add_argument("--workers", "-w", type=int, default=DEFAULT_WORKERS,
                        help="Archives converted in parallel when PATH is a directory")
    parser.add_argument("--progress", "-p", action="store_true", help="Show progress")
    parser.add_argument("--quiet", "-q", action="store_true", help="Quiet mode")
    parser.add_argument("--verbose", action="count", default=0, help="Verbose")
    parser.add_argument("--log-file", help="Log file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()

    if not argv:
        parser.print_help()
        return EXIT_SUCCESS

    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log_file, args.quiet)

    if not args.path:
        logger.error("No input file or directory specified.")
        print("Run with --help for usage information.", file=sys.stderr)
        return EXIT_ERROR

    try:
        convert_path(
            os.path.abspath(args.path),
            force=args.force,
            workers=max(1, args.workers),
            show_progress=args.progress,
            quiet=args.quiet,
        )
    except Exception as e:
        logger.error(f"Error: {e}")
        return EXIT_ERROR

    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
