import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(debug: bool = False, log_dir: str = None):
    """Configure process logging"""

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = logging.getLevelName(os.environ.get('LOG_LEVEL', 'INFO').upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))
    handlers = [console_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'snapshot-agent.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # Keep HTTP client internals out of INFO output
    for noisy in ('botocore', 'boto3', 'urllib3', 's3transfer'):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_agent(config):
    """Snapshot agent factory"""

    from .auth import CredentialStore, create_auth_strategy
    from .vault import VaultGateway, create_vault_client
    from .backup.storage import create_writers
    from .backup.executor import SnapshotAgent

    client = create_vault_client(config)
    credentials = CredentialStore(create_auth_strategy(config), client)
    vault = VaultGateway(client, credentials)
    writers = create_writers(config)

    logger = logging.getLogger(__name__)
    logger.info(f"Vault address: {config.address} (auth method: {config.vault_auth_method.value})")
    logger.info(f"Snapshot destinations: {', '.join(w.name for w in writers)} (retain: {config.retain})")

    return SnapshotAgent(credentials, vault, writers)
