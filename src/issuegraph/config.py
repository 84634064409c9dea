from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from .github_client import DEFAULT_API_URL, DEFAULT_GRAPHQL_URL
from .layout import LAYER_SPACING, NODE_HEIGHT, NODE_SPACING, NODE_WIDTH, LayoutOptions
from .logging import get_logger
from .models import Direction
from .position_store import (
    FilePositionStore,
    HTTPPositionStore,
    MemoryPositionStore,
    PositionStore,
)

DEFAULT_CONFIG_FILE = 'issuegraph.config.yaml'
CACHE_BACKENDS = ('http', 'file', 'memory')
STATE_FILTERS = ('open', 'closed', 'all')
TOKEN_ENV_VARS = ('GITHUB_TOKEN', 'GH_TOKEN', 'GITHUB_ACCESS_TOKEN', 'GH_ACCESS_TOKEN')


class ConfigError(RuntimeError):
    pass


@dataclass
class GraphConfig:
    source_file: Path | None
    # GitHub
    github_token: str | None
    github_api_url: str
    github_graphql_url: str
    # Project
    project_id: str | None
    project_state: str
    project_field_filters: dict[str, str]
    # Cache / position store
    cache_backend: str
    cache_url: str
    cache_directory: Path
    cache_timeout: float
    # Layout
    layout_direction: Direction
    layout_node_width: float
    layout_node_height: float
    layout_node_spacing: float
    layout_layer_spacing: float
    layout_save_debounce_ms: int
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str
    # Environment
    env_load_dotenv: bool
    env_dotenv_path: str | None

    @classmethod
    def defaults(cls) -> GraphConfig:
        return _build_config({}, None)

    @property
    def layout_options(self) -> LayoutOptions:
        return LayoutOptions(
            node_width=self.layout_node_width,
            node_height=self.layout_node_height,
            node_spacing=self.layout_node_spacing,
            layer_spacing=self.layout_layer_spacing,
        )

    @property
    def save_delay(self) -> float:
        return self.layout_save_debounce_ms / 1000


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]  # Remove $ prefix
        return os.getenv(env_name, value)  # Fallback to original if not found
    return value


def _load_dotenv(dotenv_path: str | None, base: Path | None) -> bool:
    candidates = [Path(dotenv_path)] if dotenv_path else [Path('.env'), Path('.env.local')]
    for candidate in candidates:
        path = candidate if candidate.is_absolute() or base is None else base / candidate
        if path.exists():
            load_dotenv(str(path))
            get_logger().debug(f'Loaded environment variables from {path}')
            return True
    return False


def _github_token(configured: Any) -> str | None:
    resolved = _resolve_env_var(configured)
    if isinstance(resolved, str) and resolved and not resolved.startswith('$'):
        return resolved
    for var in TOKEN_ENV_VARS:
        token = os.getenv(var)
        if token:
            return token
    return None


def _number(section: dict[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'{key} must be a number, got {value!r}') from exc
    if number < 0:
        raise ConfigError(f'{key} must not be negative')
    return number


def _build_config(raw: dict[str, Any], source: Path | None) -> GraphConfig:
    gh = cast(dict[str, Any], raw.get('github', {}) or {})
    project = cast(dict[str, Any], raw.get('project', {}) or {})
    cache = cast(dict[str, Any], raw.get('cache', {}) or {})
    layout = cast(dict[str, Any], raw.get('layout', {}) or {})
    logging_config = cast(dict[str, Any], raw.get('logging', {}) or {})
    env = cast(dict[str, Any], raw.get('environment', {}) or {})
    base = source.parent if source else None

    load_env = bool(env.get('load_dotenv', True))
    dotenv_path = env.get('dotenv_path')
    if load_env:
        _load_dotenv(dotenv_path, base)

    backend = str(cache.get('backend', 'memory')).lower()
    if backend not in CACHE_BACKENDS:
        raise ConfigError(f'Unknown cache backend {backend!r}; expected one of {CACHE_BACKENDS}')
    state = str(project.get('state', 'all')).lower()
    if state not in STATE_FILTERS:
        raise ConfigError(f'Unknown project state {state!r}; expected one of {STATE_FILTERS}')
    try:
        direction = Direction.coerce(str(layout.get('direction', 'vertical')))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    filters_raw = project.get('field_filters', {}) or {}
    if not isinstance(filters_raw, dict):
        raise ConfigError('project.field_filters must be a mapping of field id -> value')
    directory = Path(str(cache.get('directory', '.issuegraph_cache')))
    if base is not None and not directory.is_absolute():
        directory = base / directory
    project_id = _resolve_env_var(project.get('id'), 'ISSUEGRAPH_PROJECT_ID')

    return GraphConfig(
        source_file=source,
        github_token=_github_token(gh.get('token')),
        github_api_url=str(gh.get('api_url', DEFAULT_API_URL)),
        github_graphql_url=str(gh.get('graphql_url', DEFAULT_GRAPHQL_URL)),
        project_id=project_id if isinstance(project_id, str) and not project_id.startswith('$') else None,
        project_state=state,
        project_field_filters={str(k): str(v) for k, v in filters_raw.items() if v is not None},
        cache_backend=backend,
        cache_url=str(_resolve_env_var(cache.get('url', 'http://127.0.0.1:8080/api'))),
        cache_directory=directory,
        cache_timeout=_number(cache, 'timeout', 10.0),
        layout_direction=direction,
        layout_node_width=_number(layout, 'node_width', NODE_WIDTH),
        layout_node_height=_number(layout, 'node_height', NODE_HEIGHT),
        layout_node_spacing=_number(layout, 'node_spacing', NODE_SPACING),
        layout_layer_spacing=_number(layout, 'layer_spacing', LAYER_SPACING),
        layout_save_debounce_ms=int(_number(layout, 'save_debounce_ms', 500)),
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=str(logging_config.get('level', 'INFO')),
        env_load_dotenv=load_env,
        env_dotenv_path=dotenv_path,
    )


def load_config(path: str | Path) -> GraphConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f'{p} must contain a mapping at the top level')
    return _build_config(cast(dict[str, Any], loaded), p)


def create_store(config: GraphConfig) -> PositionStore:
    if config.cache_backend == 'http':
        return HTTPPositionStore(config.cache_url, timeout=config.cache_timeout)
    if config.cache_backend == 'file':
        return FilePositionStore(config.cache_directory)
    return MemoryPositionStore()


__all__ = [
    'DEFAULT_CONFIG_FILE',
    'ConfigError',
    'GraphConfig',
    'create_store',
    'load_config',
]
