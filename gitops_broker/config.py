"""Configuration management for the git-backed broker store."""

import os
from typing import Optional
from dataclasses import dataclass, field


@dataclass
class GitConfig:
    """Git repository configuration."""
    local_path: str = "gitops-repo"
    remote: Optional[str] = None
    remote_name: str = "origin"
    remote_branch: str = "main"
    ssh_key_path: Optional[str] = None
    author_name: str = "gitops-broker"
    author_email: str = "gitops-broker@localhost"
    operation_timeout: float = 60.0  # seconds, enforced at the API boundary


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class APIConfig:
    """API configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False


@dataclass
class Config:
    """Main configuration class."""
    git: GitConfig = field(default_factory=GitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        config = cls()

        # Git config
        config.git.local_path = os.getenv('GIT_LOCAL_PATH', config.git.local_path)
        config.git.remote = os.getenv('GIT_REMOTE') or None
        config.git.remote_name = os.getenv('GIT_REMOTE_NAME', config.git.remote_name)
        config.git.remote_branch = os.getenv('GIT_REMOTE_BRANCH', config.git.remote_branch)
        config.git.ssh_key_path = os.getenv('GIT_SSH_KEY_PATH') or None
        config.git.author_name = os.getenv('GIT_AUTHOR_NAME', config.git.author_name)
        config.git.author_email = os.getenv('GIT_AUTHOR_EMAIL', config.git.author_email)
        config.git.operation_timeout = float(
            os.getenv('GIT_OPERATION_TIMEOUT', str(config.git.operation_timeout))
        )

        # API config
        config.api.host = os.getenv('API_HOST', config.api.host)
        config.api.port = int(os.getenv('API_PORT', str(config.api.port)))
        config.api.debug = os.getenv('API_DEBUG', 'false').lower() == 'true'

        # Logging config
        config.logging.level = os.getenv('LOG_LEVEL', config.logging.level)
        config.logging.file_path = os.getenv('LOG_FILE_PATH')

        return config


# Global configuration instance
config = Config.from_env()
