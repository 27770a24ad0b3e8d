# vmportal/config.py
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",  # ignore unknown fields like APP_ENV
    )

    # database (DATABASE_URL wins over the individual parts)
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "vmportal"
    db_user: str = "vmportal"
    db_pass: str = ""

    # broker / locks
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None
    lock_backend: str = Field("local", description="'local' (per process) or 'redis' (shared)")
    lock_ttl_seconds: int = 1800
    lock_wait_seconds: int = 30

    # hypervisor CLI
    libvirt_uri: Optional[str] = None
    virsh_bin: str = "virsh"
    qemu_img_bin: str = "qemu-img"
    virt_install_bin: str = "virt-install"
    escalation_prefix: str = "sudo -n"
    disk_dir: str = "/var/lib/libvirt/images"
    command_timeout: int = 120
    install_timeout: int = 1800

    # remote hypervisor host (commands go over SSH when set)
    hypervisor_ssh_host: Optional[str] = None
    hypervisor_ssh_port: int = 22
    hypervisor_ssh_user: str = "root"
    hypervisor_ssh_password: Optional[str] = None
    hypervisor_ssh_key: Optional[str] = None

    # maintenance jobs
    sync_interval_seconds: int = 120
    cleanup_interval_seconds: int = 3600

    log_level: str = "INFO"

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.db_user}:{self.db_pass}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


# single settings instance imported elsewhere
settings = Settings()
