import json, pathlib
from pydantic import BaseModel


class Settings(BaseModel):
    coprocessor_host: str = "10.0.0.11"
    telemetry_bind_host: str = "0.0.0.0"
    telemetry_port: int = 5800
    command_port: int = 5801
    time_sync_port: int = 5802
    time_sync_samples: int = 10
    time_sync_interval_s: float = 60.0  # 0 disables periodic resync
    connect_timeout_s: float = 5.0
    sync_timeout_s: float = 1.0
    receiver_poll_delay_s: float = 0.025
    status_interval_s: float = 1.0
    telemetry_rate_hz: int = 30
    controller_host: str = "10.0.0.2"
    trusted_clients: list[str] = ["10.0.0.", "127.0.0.1", "192.168."]
    log_file_path: str = "vision_link.log"


def load_config(path="config.json") -> Settings:
    config_path = pathlib.Path(path)
    if not config_path.exists():
        return Settings()
    raw = json.loads(config_path.read_text())
    return Settings(**raw)
