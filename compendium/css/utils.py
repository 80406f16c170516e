import logging
import pathlib

CSS_DIR = pathlib.Path(__file__).parent
logger = logging.getLogger(__name__)


def load_css(name: str) -> str:
    path = CSS_DIR / name
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("Missing stylesheet %s", path)
        return f"/* missing CSS file: {name} */"
