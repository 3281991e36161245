# shared/setup_base.py

import os
import json
from typing import Dict, Any, Optional
from redis.asyncio import Redis
from redis.exceptions import RedisError


class SetupBase:
    """
    Base class for service setup.

    Responsibilities:
      - Load Truth from Redis (degraded-safe: Truth may be unreachable)
      - Extract component definition
      - Apply built-in defaults, then declared env vars (truth defaults + shell overrides)
      - Pass through structural (non-env) configuration blocks
    """

    # Structural config blocks that should be preserved verbatim
    STRUCTURAL_KEYS = {
        "tiers",
        "collections",
        "local_keys",
    }

    # Values every service gets even when Truth is unreachable
    DEFAULTS: Dict[str, Any] = {}

    def __init__(self, service_name: str, logger=None):
        self.service_name = service_name
        self.logger = logger

    def log(self, message: str, emoji: str = "ℹ️"):
        if self.logger:
            self.logger.info(message, emoji=emoji)

    def warn(self, message: str):
        if self.logger:
            self.logger.warn(message)

    async def load_truth(self) -> Optional[Dict[str, Any]]:
        """
        Read the Truth document.

        Returns None when Redis is unreachable or the key is missing, so a
        service whose storage tiers are all optional can still boot.
        """
        truth_url = os.getenv("TRUTH_REDIS_URL", "redis://127.0.0.1:6379")
        truth_key = os.getenv("TRUTH_REDIS_KEY", "truth")

        self.log(
            f"loading Truth from Redis (url={truth_url}, key={truth_key})",
            emoji="📥",
        )

        redis = Redis.from_url(truth_url, decode_responses=True, socket_timeout=2)
        try:
            raw = await redis.get(truth_key)
        except (RedisError, OSError) as e:
            self.warn(f"[setup:{self.service_name}] Truth unreachable ({e}); using env/defaults")
            return None
        finally:
            await redis.aclose()

        if not raw:
            self.warn(f"[setup:{self.service_name}] Truth key '{truth_key}' not found or empty; using env/defaults")
            return None

        try:
            truth = json.loads(raw)
        except json.JSONDecodeError as e:
            self.warn(f"[setup:{self.service_name}] Truth is not valid JSON ({e}); using env/defaults")
            return None

        self.log("Truth loaded successfully", emoji="📄")
        return truth

    async def load(self) -> Dict[str, Any]:
        truth = await self.load_truth() or {}

        components = truth.get("components", {})
        comp = components.get(self.service_name) or {}

        if truth and not comp:
            self.warn(f"[setup:{self.service_name}] component missing in Truth; using env/defaults")

        # --------------------------------------------------
        # Base config (common to all services)
        # --------------------------------------------------
        cfg: Dict[str, Any] = {
            "service_name": self.service_name,
            "meta": comp.get("meta", {}),
            "buses": truth.get("buses", {}),
            "truth_loaded": bool(comp),
        }

        # --------------------------------------------------
        # Built-in defaults, then declared env vars (truth defaults + shell overrides)
        # --------------------------------------------------
        env_declared = {**self.DEFAULTS, **comp.get("env", {})}
        overridden = 0
        for key, default_value in env_declared.items():
            value = os.getenv(key, default_value)
            cfg[key] = value
            if os.getenv(key) is not None:
                overridden += 1

        self.log(
            f"injected {len(env_declared)} env vars into config "
            f"({overridden} overridden by shell)",
            emoji="🔧",
        )

        # --------------------------------------------------
        # Pass through structural configuration blocks
        # --------------------------------------------------
        for key in self.STRUCTURAL_KEYS:
            if key in comp:
                cfg[key] = comp[key]
                self.log(
                    f"loaded structural config '{key}'",
                    emoji="🧩",
                )

        # Allow subclasses to extend config
        await self.extend_config(cfg)

        self.log(f"setup complete for {self.service_name}", emoji="🎉")
        return cfg

    async def extend_config(self, config: Dict[str, Any]):
        """
        Hook for subclasses to extend the config dict.
        Default implementation does nothing.
        """
        pass
