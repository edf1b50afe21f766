# logging_setup.py
import logging

from rich.logging import RichHandler


def setup_logging(level="INFO") -> None:
    """Configura el logger raíz con un handler de consola de Rich."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Limpiar handlers existentes (uvicorn --reload vuelve a importar el módulo)
    root_logger.handlers.clear()

    console_handler = RichHandler(show_time=True, show_path=False, rich_tracebacks=True)
    console_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root_logger.addHandler(console_handler)

    # Reducir el ruido de algunas librerías
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
