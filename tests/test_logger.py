import io
import logging

from lazyview.logger import get_logger, set_level


def test_logger_names() -> None:
    assert get_logger("lazyview.image_store").name == "lazyview.image_store"
    assert get_logger("cli").name == "lazyview.cli"


def test_console_line_carries_image_field() -> None:
    logger = get_logger("lazyview.image_store")
    handler = logging.getLogger("lazyview").handlers[0]
    buffer = io.StringIO()
    previous = handler.setStream(buffer)
    set_level(logging.INFO)
    try:
        logger.info("loaded", extra={"image": "a.tif"})
        logger.info("no image")
        logger.debug("hidden")
        set_level(logging.ERROR)
        logger.warning("also hidden")
    finally:
        handler.setStream(previous)
        set_level(logging.INFO)
    lines = buffer.getvalue().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("image=a.tif: loaded")
    assert lines[1].endswith("image=-: no image")
    assert "[INFO]" in lines[0]
