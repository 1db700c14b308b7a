"""Global hub settings"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Centralized configuration.
    Reads configs from env variables.
    """

    app_name: str = "Chat Hub"
    server_host: str = "0.0.0.0"
    server_port: int = 5000

    client_url: str = "http://localhost:5173"

    log_level: str = "INFO"

    default_room: str = "general"

    # Discoverable catalog, ad hoc room names are still accepted.
    rooms: list[str] = ["general", "random", "tech", "gaming"]

    room_history_limit: int = 100

    page_default_limit: int = 20
    page_max_limit: int = 50

    search_limit: int = 100

    username_min_length: int = 3
    username_max_length: int = 20

    model_config = {"env_file": ".env"}


settings = Settings()
