import logging

import pytest

from unpin.core.jobs import JobManager
from unpin.core.reporter import Reporter
from unpin.hooking.interceptor import HookInstaller
from unpin.hooking.resolver import SymbolResolver

from tests.common import SyntheticProcess


@pytest.fixture
def process():
    return SyntheticProcess()


@pytest.fixture
def installer(process):
    return HookInstaller(process)


@pytest.fixture
def resolver(process):
    return SymbolResolver(process)


@pytest.fixture
def reporter():
    return Reporter()


@pytest.fixture
def jobs():
    return JobManager()


@pytest.fixture
def bypass_log(caplog):
    caplog.set_level(logging.INFO, logger="unpin.bypass")
    return caplog
