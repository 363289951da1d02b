import logging
import secrets
import string


def setup_logger(logger_name: str) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                                  datefmt='%d-%b-%y %H:%M:%S')
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level=logging.INFO)
    console_handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(console_handler)

    return logger


def generate_token(length: int = 6) -> str:
    alphabet = string.ascii_lowercase + string.digits

    return ''.join(secrets.choice(alphabet) for _ in range(length))


def generate_prefixes(count: int, length: int = 6) -> list[str]:
    prefixes: set[str] = set()

    while len(prefixes) < count:
        prefixes.add(generate_token(length))

    return sorted(prefixes)
