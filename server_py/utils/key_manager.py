# -*- coding: utf-8 -*-
"""
Freepik API Key Manager
Picks a random key per task and lets a later status check find the same key
again by its key id.
"""
import random
import os
import hashlib
import logging

logger = logging.getLogger("KeyManager")


def mask_key(key: str | None) -> str:
    if not key:
        return "None"
    if len(key) <= 12:
        return "***"
    return f"{key[:6]}...{key[-4:]}"


class KeyManager:
    """Multiple API keys, random assignment, lookup by key id"""

    def __init__(self, keys=None, env_names=("FREEPIK_API_KEYS", "FREEPIK_API_KEY")):
        if keys is None:
            keys = []
            # first non-empty variable wins, comma separated
            for name in env_names:
                env_keys = os.getenv(name, "")
                if env_keys.strip():
                    keys = [k.strip() for k in env_keys.split(",") if k.strip()]
                    break
        self.keys = [k.strip() for k in keys if k and k.strip()]

        self._key_id_map = {}
        for key in self.keys:
            self._key_id_map[self.key_id(key)] = key

        if self.keys:
            logger.info("[KeyManager] Loaded %s API keys: %s", len(self.keys), ", ".join(self._key_id_map))
        else:
            logger.warning("[KeyManager] No API keys loaded from %s", "/".join(env_names))

    @staticmethod
    def key_id(key: str) -> str:
        """First 8 hex chars of the key's SHA-256"""
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:8]

    def get_random_key(self) -> tuple[str | None, str | None]:
        """
        Returns: (api_key, key_id), or (None, None) when no key is configured
        """
        if not self.keys:
            return None, None
        key = random.choice(self.keys)
        return key, self.key_id(key)

    def get_key_by_id(self, key_id: str | None) -> str | None:
        """
        Key that created a task. Without a key id (older clients) any key is
        returned; an unknown key id returns None.
        """
        if not key_id:
            key, _ = self.get_random_key()
            return key
        return self._key_id_map.get(key_id)


freepik_keys = KeyManager()
