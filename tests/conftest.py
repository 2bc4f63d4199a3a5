import logging

import pytest

from mbox_to_html import logger


MBOX = (
    b"From alice@example.com Mon Jan  1 10:00:00 2024\n"
    b"From: Alice <alice@example.com>\n"
    b"Subject: First\n"
    b"Date: Mon, 01 Jan 2024 10:00:00 +0000\n"
    b"\n"
    b"Hello From the first message\n"
    b"\n"
    b"From bob@example.com Tue Jan  2 11:00:00 2024\n"
    b"From: bob@example.com\n"
    b"Subject: Second\n"
    b"\n"
    b"Second body\n"
    b"\n"
    b"From carol@example.com Wed Jan  3 12:00:00 2024\n"
    b"From: Carol <carol@example.com>\n"
    b"Subject: Third\n"
    b"Content-Type: text/html; charset=utf-8\n"
    b"\n"
    b"<p>Third body</p>\n"
)


@pytest.fixture
def mbox_bytes():
    return MBOX


@pytest.fixture
def mbox_file(tmp_path):
    path = tmp_path / "inbox.mbox"
    path.write_bytes(MBOX)
    return path


@pytest.fixture(autouse=True)
def _reset_logger():
    # main() installs handlers bound to the captured stderr of the current test
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    logger.setLevel(logging.NOTSET)
