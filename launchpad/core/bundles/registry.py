"""Engine Registry: configured relay services and their priority order."""

from __future__ import annotations

from typing import Dict, List, Optional

from launchpad.config import EngineConfig, RelayConfig

from .endpoints import dedupe_preserve_order, parse_engine_names
from .models import SubmitOptions


class EngineRegistry:
    """
    Read-only view over the engines built at startup.

    Safe to share between concurrent callers; nothing here mutates after
    construction.
    """

    def __init__(self, config: RelayConfig):
        self._config = config
        self._engines: Dict[str, EngineConfig] = {engine.key: engine for engine in config.engines}
        self._default_order = self._compute_default_order()

    def _compute_default_order(self) -> List[str]:
        if self._config.engine_order:
            order = list(self._config.engine_order)
        else:
            default = parse_engine_names([self._config.default_engine])
            order = dedupe_preserve_order(default + ["jito", "pumpportal"])
        return [key for key in order if self.is_available(key)]

    @property
    def default_engine(self) -> str:
        names = parse_engine_names([self._config.default_engine])
        return names[0] if names else "jito"

    @property
    def default_order(self) -> List[str]:
        return list(self._default_order)

    def get(self, key: Optional[str]) -> Optional[EngineConfig]:
        names = parse_engine_names([key]) if key else []
        return self._engines.get(names[0]) if names else None

    def is_available(self, key: str) -> bool:
        engine = self._engines.get(key)
        return engine is not None and len(engine.endpoints) > 0

    def resolve_order(self, options: Optional[SubmitOptions] = None) -> List[str]:
        """Engine order for one call: explicit order, single engine, preferences, then default."""
        if options is not None:
            if options.engine_order:
                explicit = parse_engine_names(options.engine_order)
                if explicit:
                    return explicit
            if options.engine:
                single = parse_engine_names([options.engine])
                if single:
                    return single
            if options.preferred_engines:
                preferred = parse_engine_names(options.preferred_engines)
                if preferred:
                    return preferred
        return self.default_order

    def list_engines(self) -> List[Dict[str, object]]:
        default = self.default_engine
        return [
            {
                "key": engine.key,
                "label": engine.label,
                "description": engine.description,
                "available": len(engine.endpoints) > 0,
                "endpointCount": len(engine.endpoints),
                "dryRun": engine.dry_run,
                "default": engine.key == default,
            }
            for engine in self._engines.values()
        ]
