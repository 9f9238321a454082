import logging

import pytest

import url2md.core as core


@pytest.fixture(autouse=True)
def _fresh_url2md_logger():
    # setup_logging() binds its handler to the sys.stderr of the moment; each
    # test starts without one so capsys sees the log lines it produces.
    saved = (list(core.LOG.handlers), core.LOG.propagate, core.LOG.level)
    core.LOG.handlers.clear()
    core.LOG.propagate = True
    core.LOG.setLevel(logging.NOTSET)
    yield
    core.LOG.handlers[:] = saved[0]
    core.LOG.propagate = saved[1]
    core.LOG.setLevel(saved[2])
