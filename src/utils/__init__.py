"""Shared utilities for modcache."""

from utils.env_utils import env_bool, env_float, env_int, env_path, env_value
from utils.file_io import find_in_parents, read_bytes_bounded, read_toml, write_bytes_atomic
from utils.hashing import (
    CacheKeyBuilder,
    hash_files_ordered,
    hash_json_canonical,
    hash_msgpack_canonical,
    hash_sha256_hex,
    hash_text_sha256,
)

__all__ = [
    "CacheKeyBuilder",
    "env_bool",
    "env_float",
    "env_int",
    "env_path",
    "env_value",
    "find_in_parents",
    "hash_files_ordered",
    "hash_json_canonical",
    "hash_msgpack_canonical",
    "hash_sha256_hex",
    "hash_text_sha256",
    "read_bytes_bounded",
    "read_toml",
    "write_bytes_atomic",
]
