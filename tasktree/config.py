"""
Configuration management for TaskTree.

Loads settings from config.ini with environment variable overrides.
Provides centralized configuration for the move engine, the API server,
the client reconciler and the database.
"""

import configparser
import os
from pathlib import Path
from typing import Optional, Dict, Any

from tasktree.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".tasktree"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{DEFAULT_CONFIG_DIR / 'tasktree.db'}"

VALID_DELETE_POLICIES = ("cascade", "reparent")


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file, defaults to ~/.tasktree/config.ini
        """
        self.config_path = config_path or self._default_config_path()
        self._config = configparser.ConfigParser()
        self._load()

    def _default_config_path(self) -> Path:
        """Get default config path."""
        return DEFAULT_CONFIG_DIR / "config.ini"

    def _load(self):
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                self._config.read(self.config_path)
                logger.info(f"Loaded configuration from {self.config_path}")
            except configparser.Error as e:
                logger.warning(f"Failed to read config file: {e}. Using defaults.")
        else:
            logger.debug(f"Config file not found at {self.config_path}. Using defaults.")

    def get_database_config(self) -> Dict[str, Any]:
        """
        Get database configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTREE_DATABASE_URL

        Returns:
            Dictionary with database configuration
        """
        config = {
            'url': os.getenv('TASKTREE_DATABASE_URL') or
                   self._config.get('database', 'url', fallback=DEFAULT_DATABASE_URL),
        }

        logger.debug(f"Database config: url={config['url']}")

        return config

    def get_move_config(self) -> Dict[str, Any]:
        """
        Get move engine configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTREE_LOCK_TIMEOUT (seconds to wait for a scope lock)
        - TASKTREE_ORDER_GAP (spacing between freshly numbered siblings)
        - TASKTREE_MIN_ORDER_GAP (neighbour distance that triggers renumbering)

        Returns:
            Dictionary with move configuration
        """
        config = {
            'lock_timeout': float(os.getenv('TASKTREE_LOCK_TIMEOUT') or
                                  self._config.get('move', 'lock_timeout', fallback='5.0')),
            'order_gap': float(os.getenv('TASKTREE_ORDER_GAP') or
                               self._config.get('move', 'order_gap', fallback='1000.0')),
            'min_order_gap': float(os.getenv('TASKTREE_MIN_ORDER_GAP') or
                                   self._config.get('move', 'min_order_gap', fallback='1e-6')),
        }

        if config['order_gap'] <= 0:
            logger.warning(f"Invalid order_gap {config['order_gap']}, using 1000.0")
            config['order_gap'] = 1000.0

        logger.debug(f"Move config: lock_timeout={config['lock_timeout']}, "
                     f"order_gap={config['order_gap']}, min_order_gap={config['min_order_gap']}")

        return config

    def get_client_config(self) -> Dict[str, Any]:
        """
        Get client reconciler configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTREE_COMMIT_TIMEOUT
        - TASKTREE_MAX_RETRIES
        - TASKTREE_API_BASE_URL

        Returns:
            Dictionary with client configuration
        """
        config = {
            'commit_timeout': float(os.getenv('TASKTREE_COMMIT_TIMEOUT') or
                                    self._config.get('client', 'commit_timeout', fallback='10.0')),
            'max_retries': int(os.getenv('TASKTREE_MAX_RETRIES') or
                               self._config.get('client', 'max_retries', fallback='2')),
            'base_url': os.getenv('TASKTREE_API_BASE_URL') or
                        self._config.get('client', 'base_url', fallback=''),
        }

        logger.debug(f"Client config: commit_timeout={config['commit_timeout']}, "
                     f"max_retries={config['max_retries']}, base_url={config['base_url'] or '<in-process>'}")

        return config

    def get_task_config(self) -> Dict[str, Any]:
        """
        Get task lifecycle configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTREE_DELETE_POLICY (cascade/reparent)

        Returns:
            Dictionary with task configuration
        """
        policy = (os.getenv('TASKTREE_DELETE_POLICY') or
                  self._config.get('tasks', 'delete_policy', fallback='cascade')).lower()

        if policy not in VALID_DELETE_POLICIES:
            logger.warning(f"Invalid delete_policy '{policy}', using 'cascade'")
            policy = 'cascade'

        config = {'delete_policy': policy}

        logger.debug(f"Task config: delete_policy={config['delete_policy']}")

        return config

    def get_api_config(self) -> Dict[str, Any]:
        """
        Get API server configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTREE_API_HOST
        - TASKTREE_API_PORT

        Returns:
            Dictionary with API server configuration
        """
        config = {
            'host': os.getenv('TASKTREE_API_HOST') or
                    self._config.get('api', 'host', fallback='127.0.0.1'),
            'port': int(os.getenv('TASKTREE_API_PORT') or
                        self._config.get('api', 'port', fallback='8000')),
        }

        logger.debug(f"API config: host={config['host']}, port={config['port']}")

        return config
