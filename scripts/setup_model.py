"""
scripts/setup_model.py — Fetch the reasoning-oracle model for offline use.

The LLM oracle backend never touches the network: ``llm/engine.py`` loads
from the local HuggingFace cache only. Run this once on a connected machine
(or copy its cache directory over) before setting ``oracle.backend: llm``.

Usage:
    python scripts/setup_model.py
    python scripts/setup_model.py --model-id Qwen/Qwen2.5-1.5B-Instruct --force
    HF_TOKEN=hf_... python scripts/setup_model.py --cache-dir /opt/models
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from huggingface_hub import snapshot_download

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.config import load_config  # noqa: E402

logger = logging.getLogger("setup_model")

# Weights and tokenizer files a causal LM needs under transformers + torch
_ALLOW_PATTERNS: list[str] = [
    "*.json",
    "*.safetensors",
    "*.model",
    "*.txt",
    "tokenizer*",
]


def cached_snapshot(model_id: str, cache_dir: Path) -> Path | None:
    """Return the newest cached snapshot directory for ``model_id``, if any."""
    snapshots = cache_dir / f"models--{model_id.replace('/', '--')}" / "snapshots"
    if not snapshots.is_dir():
        return None
    candidates = sorted(snapshots.iterdir(), key=lambda p: p.stat().st_mtime, reverse=True)
    return candidates[0] if candidates else None


def fetch(model_id: str, cache_dir: Path, token: str | None) -> Path:
    """
    Download ``model_id`` into ``cache_dir``.

    Raises:
        SystemExit: If the hub cannot be reached or the repo is gated.
    """
    cache_dir.mkdir(parents=True, exist_ok=True)
    t0 = time.monotonic()
    try:
        path = snapshot_download(
            repo_id=model_id,
            cache_dir=str(cache_dir),
            token=token,
            allow_patterns=_ALLOW_PATTERNS,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("Download of %s failed: %s", model_id, exc)
        raise SystemExit(1) from exc
    logger.info("Fetched %s in %.0fs", model_id, time.monotonic() - t0)
    return Path(path)


def check_offline_load(model_id: str, cache_dir: Path) -> bool:
    """Load the tokenizer with ``local_files_only`` and render a chat template."""
    from transformers import AutoTokenizer  # type: ignore

    try:
        tokenizer = AutoTokenizer.from_pretrained(
            model_id, cache_dir=str(cache_dir), local_files_only=True
        )
        tokenizer.apply_chat_template(
            [{"role": "user", "content": "set rpm 1500 absolute"}],
            tokenize=False,
            add_generation_prompt=True,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("Offline load check failed: %s", exc)
        return False
    return True


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    oracle = load_config().oracle

    parser = argparse.ArgumentParser(description="Cache the Sentinel oracle model locally")
    parser.add_argument("--model-id", default=oracle.model_id)
    parser.add_argument("--cache-dir", default=str(oracle.resolved_cache_dir))
    parser.add_argument("--force", action="store_true", help="Download even if already cached")
    args = parser.parse_args(argv)

    cache_dir = Path(args.cache_dir).expanduser()
    existing = cached_snapshot(args.model_id, cache_dir)
    if existing is not None and not args.force:
        logger.info("Already cached at %s (use --force to refresh)", existing)
    else:
        token = os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_TOKEN")
        fetch(args.model_id, cache_dir, token)

    if not check_offline_load(args.model_id, cache_dir):
        return 1
    logger.info("Ready. Set `oracle.backend: llm` in config/sentinel.yaml to use %s.", args.model_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
