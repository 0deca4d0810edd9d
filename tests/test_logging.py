import logging

import pytest

from n2k_bridge.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("n2k_bridge.conversion").setLevel(logging.NOTSET)


def test_configure_logging_writes_file(tmp_path):
    log_path = tmp_path / "logs" / "n2k-bridge.log"

    configure_logging("DEBUG", log_path=log_path)
    logging.getLogger("n2k_bridge.test").info("hello from the bridge")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.DEBUG
    assert "| INFO | n2k_bridge.test | hello from the bridge" in log_path.read_text()


def test_network_loggers_quiet_by_default():
    configure_logging("INFO")

    assert logging.getLogger("paho").level == logging.WARNING
    assert logging.getLogger("aiohttp.client").level == logging.WARNING

    configure_logging("INFO", log_network=True)

    assert logging.getLogger("paho").level == logging.NOTSET


def test_conversion_level_is_separate():
    configure_logging("WARNING", conversion_level="debug")

    assert logging.getLogger("n2k_bridge.conversion.engine").isEnabledFor(logging.DEBUG)
    assert not logging.getLogger("n2k_bridge.app").isEnabledFor(logging.INFO)
