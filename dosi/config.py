"""Dosi Server Configuration."""

import secrets
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "Dosi Device Registry"
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False

    # Paths
    data_dir: Path = Path.home() / "dosi" / "data"
    log_file: Optional[Path] = None  # defaults to <data_dir>/server.log

    # Store
    store_backend: str = "filesystem"  # 'filesystem' | 'sqlite'
    db_path: Optional[Path] = None  # defaults to <data_dir>/registry.db
    reconcile_on_startup: bool = True
    unknown_status_text: str = "New client detected"

    # Session tokens
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    session_expire_minutes: int = 720  # 12 hours
    session_cookie_name: str = "dosi_session"

    # Operator account (only used to seed credentials.json)
    admin_username: str = "admin"
    admin_password: str = ""

    model_config = {"env_prefix": "DOSI_"}

    @property
    def registry_dir(self) -> Path:
        return self.data_dir / "registry"

    @property
    def log_path(self) -> Path:
        return self.log_file or self.data_dir / "server.log"

    @property
    def database_path(self) -> Path:
        return self.db_path or self.data_dir / "registry.db"

    @property
    def credentials_file(self) -> Path:
        return self.data_dir / "credentials.json"

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.registry_dir, self.log_path.parent, self.database_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate the token secret if not set, persist it so sessions survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.jwt_secret:
            self.jwt_secret = saved.get("jwt_secret", "") or secrets.token_urlsafe(32)

        # Persist for next restart
        secrets_file.write_text(f"jwt_secret={self.jwt_secret}\n")


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()
