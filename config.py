import json
import logging
import os
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

APP_CONFIG_PATH = "config/app_config.json"
RUN_CONFIG_PATH = "config/run_config.json"


class Config:
    _instance = None  # Singleton instance

    def __new__(cls, run_config_path=RUN_CONFIG_PATH, app_config_path=APP_CONFIG_PATH):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance.app_config_path = app_config_path
            cls._instance.run_config_path = run_config_path
            cls._instance._load_config()
        return cls._instance

    @classmethod
    def reset(cls):
        """Forget the loaded settings; the next Config() reads the files again."""
        cls._instance = None

    def _load_config(self):
        """Loads .env into the environment, then the app and run JSON files (run wins)."""
        load_dotenv()
        self.settings = {}
        for path in (self.app_config_path, self.run_config_path):
            try:
                with open(path, "r") as file:
                    self.settings.update(json.load(file))
            except FileNotFoundError:
                logger.warning(f"{path} not found, using defaults")

    def get(self, key, default=None):
        """Get a config value from settings or environment variables."""
        return self.settings.get(key, os.getenv(key, default))

    def get_int(self, key, default):
        """Integer setting; values coming from .env arrive as strings."""
        value = self.get(key, default)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Config value {key}={value!r} is not an integer")
