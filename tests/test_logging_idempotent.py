import logging
import os
import sys

from presswire.utils import configure_logging, log_event


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "app.log"
    monkeypatch.setenv("PW_LOG_LEVEL", "INFO")
    monkeypatch.setenv("PW_LOG_FILE", str(log_file))
    monkeypatch.setenv("PW_LOG_LEVELS", "presswire.storage=DEBUG")

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    storage_logger = logging.getLogger("presswire.storage")
    original_storage_level = storage_logger.level
    try:
        root.handlers = []
        configure_logging("presswire.api")
        configure_logging("presswire.api")

        file_handlers = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
        stdout_handlers = [
            h
            for h in root.handlers
            if not isinstance(h, logging.FileHandler)
            and isinstance(h, logging.StreamHandler)
            and h.stream is sys.stdout
        ]

        assert len(stdout_handlers) == 1
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(str(log_file))
        assert storage_logger.level == logging.DEBUG
    finally:
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)
        storage_logger.setLevel(original_storage_level)


def test_log_event_formats_key_values(caplog):
    logger = logging.getLogger("presswire.test")
    with caplog.at_level(logging.INFO, logger="presswire.test"):
        log_event(logger, logging.INFO, "source_claimed", id=7, host="a.example")

    assert caplog.records[-1].getMessage() == "event=source_claimed id=7 host=a.example"
