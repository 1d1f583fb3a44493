"""Filesystem locations and tuning constants for specgraph."""

from __future__ import annotations

import os
from pathlib import Path

SPEC_ROOT = Path(os.environ.get("SPECGRAPH_SPEC_ROOT", "spec"))
BASE_DIR = Path(os.environ.get("SPECGRAPH_HOME", ".specgraph")).expanduser()
SEARCH_DIR = BASE_DIR / "search"
INDEX_DB = SEARCH_DIR / "index.db"
CONFIG_FILE = BASE_DIR / "config.toml"

# Set to "0" to skip loading the sqlite-vec extension even when installed.
SQLITE_VEC_ENABLED = os.environ.get("SPECGRAPH_SQLITE_VEC", "1") != "0"

EMBEDDING_DIM = 256
EMBEDDING_MODEL_TAG = "local-hash-ngrams-v1"

CHUNK_TARGET_LEN = 800
SNIPPET_CHARS = 220

LEXICAL_CANDIDATE_FACTOR = 8
SEMANTIC_FLOOR = 0.2
VEC_TOP_K = 60
RRF_K = 60
