"""Backend configuration loader for pocket-chat."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ..adapters.base import build_timeout
from ..adapters.google_adapter import GEMINI_BASE_URL, GoogleAdapter
from ..adapters.mock_adapter import MockAdapter
from ..adapters.ollama_adapter import OllamaAdapter
from .types import ApiShape, RequestOptions

DEFAULT_BACKENDS: dict[str, dict] = {
    "gemini": {
        "kind": "gemini",
        "model": "gemini-1.5-flash",
        "api_key_env": "GOOGLE_API_KEY",
        "streaming": False,
    },
    "ollama": {
        "kind": "ollama",
        "model": "phi",
        "streaming": True,
        "api_shape": "chat",
    },
}

KINDS = ("gemini", "ollama", "mock")


def use_mocks() -> bool:
    return os.environ.get("POCKET_CHAT_ENV", "real").lower() == "mock"


class BackendConfig:
    """Configuration for a single named backend."""

    def __init__(self, name: str, config_dict: dict):
        self.name = name
        self.kind = config_dict.get("kind", name)
        if self.kind not in KINDS:
            raise ValueError(f"Unknown backend kind '{self.kind}' for backend '{name}'")
        self.model = config_dict.get("model") or ("gemini-1.5-flash" if self.kind == "gemini" else "phi")
        self.base_url = config_dict.get("base_url")
        self.api_key_env = config_dict.get("api_key_env", "GOOGLE_API_KEY" if self.kind == "gemini" else "")
        self.description = config_dict.get("description", "")
        self.streaming = bool(config_dict.get("streaming", self.kind != "gemini"))
        self.api_shape = ApiShape(config_dict.get("api_shape", "chat"))
        self.generation = config_dict.get("generation", {})
        self.model_options = config_dict.get("options", {})
        self.timeouts = config_dict.get("timeouts", {})

    @property
    def default_options(self) -> RequestOptions:
        return RequestOptions(use_streaming=self.streaming, api_shape=self.api_shape)

    def is_available(self, use_mocks: bool = False) -> bool:
        """Check if this backend can be used (has its API key or is in mock mode)."""
        if use_mocks or not self.api_key_env:
            return True
        return bool(os.environ.get(self.api_key_env))

    def create_adapter(self, use_mocks: bool = False, **kwargs):
        """Create the adapter for this backend.

        Extra keyword arguments (e.g. ``transport``) go to the HTTP adapters.
        """
        if use_mocks or self.kind == "mock":
            return MockAdapter(model=self.model, default_options=self.default_options)
        timeout = build_timeout(**self.timeouts) if self.timeouts else None
        if self.kind == "gemini":
            return GoogleAdapter(
                model=self.model,
                api_key_env=self.api_key_env,
                base_url=self.base_url or GEMINI_BASE_URL,
                generation_config=self.generation,
                timeout=timeout,
                default_options=self.default_options,
                **kwargs,
            )
        return OllamaAdapter(
            model=self.model,
            base_url=self.base_url,
            options=self.model_options,
            timeout=timeout,
            default_options=self.default_options,
            **kwargs,
        )


class BackendConfigLoader:
    """Loads and manages the named backends from YAML."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            env_path = os.environ.get("POCKET_CHAT_CONFIG", "").strip()
            if env_path:
                config_path = Path(env_path)
            else:
                # Default to config/backends.yaml relative to project root
                project_root = Path(__file__).parent.parent.parent
                config_path = project_root / "config" / "backends.yaml"

        self.config_path = config_path
        self._config = None
        self._backends = None

    def _load_config(self):
        """Load the configuration file, falling back to built-in defaults."""
        if self._config is not None:
            return
        if self.config_path.exists():
            with open(self.config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
        else:
            self._config = {}

        raw_backends = self._config.get("backends") or DEFAULT_BACKENDS
        shared_timeouts = self._config.get("timeouts", {})
        self._backends = {}
        for name, backend_dict in raw_backends.items():
            backend_dict = dict(backend_dict or {})
            if shared_timeouts and "timeouts" not in backend_dict:
                backend_dict["timeouts"] = shared_timeouts
            self._backends[name] = BackendConfig(name, backend_dict)

    @property
    def backends(self) -> Dict[str, BackendConfig]:
        self._load_config()
        return self._backends

    @property
    def default_backend(self) -> str:
        self._load_config()
        name = self._config.get("default_backend")
        if name in self.backends:
            return name
        return next(iter(self.backends))

    def get_backend(self, name: Optional[str] = None) -> Optional[BackendConfig]:
        return self.backends.get(name or self.default_backend)

    def list_backends(self) -> List[str]:
        return list(self.backends)


# Global instance
backend_config_loader = BackendConfigLoader()
