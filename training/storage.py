"""
Profile Storage - Durable per-(monster type, player profile) learning state.

Backends, in order of preference:
- Redis (when a client is injected) for shared key-value storage
- JSON files with a checksum and a .backup copy
- Local dict (tests and demos)

Load failures of any kind mean "no prior state"; nothing here raises to the
caller.
"""

import os
import json
import time
import hashlib
import logging
import numpy as np
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def profile_key(entity_type: int, profile_id: str) -> str:
    return f"profile:{int(entity_type)}:{profile_id}"


def checksum(data: Any) -> str:
    encoded = json.dumps(data, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


def compress_weights(weights: List[float]) -> Dict[str, Any]:
    """Quantize a weight vector to 8 bits with a shared offset and scale."""
    arr = np.asarray(weights, dtype=np.float32)
    if arr.size == 0:
        return {'min': 0.0, 'scale': 0.0, 'q': []}
    lo, hi = float(arr.min()), float(arr.max())
    scale = (hi - lo) / 255.0 if hi > lo else 0.0
    if scale > 0:
        q = np.round((arr - lo) / scale).astype(np.uint8)
    else:
        q = np.zeros(arr.shape, dtype=np.uint8)
    return {'min': lo, 'scale': scale, 'q': q.tolist()}


def decompress_weights(packed: Dict[str, Any]) -> np.ndarray:
    q = np.asarray(packed.get('q', []), dtype=np.float32)
    return (q * packed.get('scale', 0.0) + packed.get('min', 0.0)).astype(np.float32)


class ProfileStore:
    """
    Save/load opaque agent state keyed by (entity type, profile id).
    """

    def __init__(self, redis_client=None, directory: Optional[str] = None):
        self.redis = redis_client
        self.directory = directory
        self.local_profiles: Dict[str, Dict] = {}
        self.stats = {'saves': 0, 'loads': 0, 'misses': 0,
                      'recoveries': 0, 'failures': 0}
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        safe = key.replace(':', '_').replace(os.sep, '_')
        return os.path.join(self.directory, f"{safe}.json")

    def _envelope(self, key: str, data: Dict) -> Dict:
        return {
            'key': key,
            'saved_at': time.time(),
            'checksum': checksum(data),
            'data': data,
        }

    @staticmethod
    def _verify(envelope: Dict) -> Optional[Dict]:
        if not isinstance(envelope, dict):
            return None
        data = envelope.get('data')
        if data is None or envelope.get('checksum') != checksum(data):
            return None
        return data

    def save(self, key: Tuple[int, str], data: Dict) -> bool:
        """
        Persist one profile. Falls back to process memory when no durable
        backend accepted the write, and returns False in that case.
        """
        skey = profile_key(*key)
        envelope = self._envelope(skey, data)
        self.stats['saves'] += 1
        stored = False

        if self.redis:
            try:
                self.redis.set(skey, json.dumps(envelope, default=str))
                stored = True
            except Exception as e:
                logger.error(f"Redis profile store failed: {e}")

        if self.directory:
            try:
                path = self._path(skey)
                payload = json.dumps(envelope, indent=2, default=str)
                for target in (path, path + '.backup'):
                    tmp = target + '.tmp'
                    with open(tmp, 'w') as f:
                        f.write(payload)
                    os.replace(tmp, target)
                stored = True
            except OSError as e:
                logger.error(f"Profile file write failed for {skey}: {e}")

        if stored:
            return True
        self.local_profiles[skey] = envelope
        if self.redis or self.directory:
            self.stats['failures'] += 1
            logger.warning(f"Keeping {skey} in memory only")
            return False
        return True

    def load(self, key: Tuple[int, str]) -> Optional[Dict]:
        """Load one profile, or None when there is no usable prior state."""
        skey = profile_key(*key)
        self.stats['loads'] += 1

        if self.redis:
            try:
                raw = self.redis.get(skey)
                if raw:
                    data = self._verify(json.loads(raw))
                    if data is not None:
                        return data
                    logger.warning(f"Checksum mismatch for {skey} in Redis")
            except Exception as e:
                logger.error(f"Redis profile retrieve failed: {e}")

        if self.directory:
            path = self._path(skey)
            for i, candidate in enumerate((path, path + '.backup')):
                data = self._read_file(candidate)
                if data is not None:
                    if i > 0:
                        self.stats['recoveries'] += 1
                        logger.info(f"Recovered {skey} from backup")
                    return data

        envelope = self.local_profiles.get(skey)
        if envelope is not None:
            data = self._verify(envelope)
            if data is not None:
                return data

        self.stats['misses'] += 1
        return None

    def _read_file(self, path: str) -> Optional[Dict]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r') as f:
                envelope = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable profile file {path}: {e}")
            return None
        data = self._verify(envelope)
        if data is None:
            logger.warning(f"Checksum mismatch in {path}")
        return data

    def delete(self, key: Tuple[int, str]):
        skey = profile_key(*key)
        self.local_profiles.pop(skey, None)
        if self.redis:
            try:
                self.redis.delete(skey)
            except Exception as e:
                logger.error(f"Redis profile delete failed: {e}")
        if self.directory:
            path = self._path(skey)
            for candidate in (path, path + '.backup'):
                try:
                    if os.path.exists(candidate):
                        os.remove(candidate)
                except OSError as e:
                    logger.error(f"Could not remove {candidate}: {e}")

    def exists(self, key: Tuple[int, str]) -> bool:
        skey = profile_key(*key)
        if skey in self.local_profiles:
            return True
        if self.redis:
            try:
                if self.redis.get(skey):
                    return True
            except Exception as e:
                logger.error(f"Redis profile lookup failed: {e}")
        if self.directory and os.path.exists(self._path(skey)):
            return True
        return False
