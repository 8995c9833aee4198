"""
llm/engine.py — Local instruction-tuned model behind the LLM oracle.

Loads a causal LM and its tokenizer from the local HuggingFace cache (no
network access at runtime) and turns chat messages into a completion. The
model is loaded lazily on first use and shared between threads; latency
budgets are enforced by the caller (see ``llm/oracle.py``).
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Optional

import torch

from core.config import OracleConfig

logger = logging.getLogger(__name__)


class ModelNotFoundError(RuntimeError):
    """
    Raised when the oracle model is not cached locally.

    Run ``scripts/setup_model.py`` while online to download it first.
    """


class TextGenerationEngine:
    """
    Thread-safe lazy wrapper around ``AutoModelForCausalLM``.

    Args:
        config: Oracle configuration (model ID, cache dir, sampling).
    """

    def __init__(self, config: OracleConfig) -> None:
        self._cfg = config
        self._lock = threading.Lock()
        self._model: Optional[object] = None
        self._tokenizer: Optional[object] = None
        self._loaded: bool = False
        logger.info("TextGenerationEngine initialised (model=%s)", config.model_id)

    @property
    def loaded(self) -> bool:
        return self._loaded

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def load(self) -> None:
        """
        Load model and tokenizer into memory. No-op if already loaded.

        Raises:
            ModelNotFoundError: If the model is not in the local cache.
        """
        with self._lock:
            if self._loaded:
                return
            self._load_locked()

    def unload(self) -> None:
        """Release the model. Safe to call when nothing is loaded."""
        with self._lock:
            if not self._loaded:
                return
            self._model = None
            self._tokenizer = None
            self._loaded = False
            if torch.cuda.is_available():
                torch.cuda.empty_cache()
            logger.info("Oracle model unloaded")

    # ──────────────────────────────────────────
    # Generation
    # ──────────────────────────────────────────

    def generate(self, messages: list[dict[str, str]], max_new_tokens: Optional[int] = None) -> str:
        """
        Complete a chat conversation.

        Args:
            messages: ``[{"role": ..., "content": ...}, ...]``.
            max_new_tokens: Override for ``config.max_new_tokens``.

        Returns:
            The decoded completion, stripped of the prompt and special tokens.
        """
        if not self._loaded:
            self.load()
        assert self._tokenizer is not None
        assert self._model is not None

        t0 = time.monotonic()
        prompt = self._tokenizer.apply_chat_template(  # type: ignore[attr-defined]
            messages, tokenize=False, add_generation_prompt=True
        )
        device = next(self._model.parameters()).device  # type: ignore[attr-defined]
        inputs = self._tokenizer(prompt, return_tensors="pt").to(device)  # type: ignore[operator]
        input_length = inputs["input_ids"].shape[1]

        with torch.no_grad():
            outputs = self._model.generate(  # type: ignore[attr-defined]
                **inputs,
                max_new_tokens=max_new_tokens or self._cfg.max_new_tokens,
                do_sample=self._cfg.do_sample,
                temperature=self._cfg.temperature if self._cfg.do_sample else None,
                pad_token_id=self._tokenizer.eos_token_id,  # type: ignore[attr-defined]
            )

        text = self._tokenizer.decode(  # type: ignore[attr-defined]
            outputs[0][input_length:], skip_special_tokens=True
        ).strip()
        logger.debug("Generated %d chars in %.0fms", len(text), (time.monotonic() - t0) * 1000.0)
        return text

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _load_locked(self) -> None:
        # Deferred import: keeps transformers off the import path of the rules backend
        from transformers import AutoModelForCausalLM, AutoTokenizer  # type: ignore

        cache_dir = self._cfg.resolved_cache_dir
        model_id = self._cfg.model_id
        self._assert_model_cached(model_id, cache_dir)

        try:
            t0 = time.monotonic()
            self._tokenizer = AutoTokenizer.from_pretrained(
                model_id, cache_dir=str(cache_dir), local_files_only=True
            )
            self._model = AutoModelForCausalLM.from_pretrained(
                model_id,
                cache_dir=str(cache_dir),
                local_files_only=True,
                device_map=self._cfg.device_map,
                torch_dtype=torch.float16 if torch.cuda.is_available() else torch.float32,
                low_cpu_mem_usage=True,
            )
            logger.info("Oracle model loaded in %.0fms", (time.monotonic() - t0) * 1000.0)
        except OSError as exc:
            raise ModelNotFoundError(
                f"Model '{model_id}' not found in cache '{cache_dir}'. "
                "Run `python scripts/setup_model.py` while online to download it."
            ) from exc

        self._loaded = True

    @staticmethod
    def _assert_model_cached(model_id: str, cache_dir: Path) -> None:
        """
        Verify the model exists in the local HuggingFace cache.

        Raises:
            ModelNotFoundError: If no cached snapshot is found.
        """
        model_cache = cache_dir / f"models--{model_id.replace('/', '--')}"
        if not model_cache.exists():
            raise ModelNotFoundError(
                f"Model '{model_id}' not found in cache '{cache_dir}'. "
                "Run `python scripts/setup_model.py` to download the model."
            )
        if not any((model_cache / "snapshots").glob("*")):
            raise ModelNotFoundError(
                f"Model '{model_id}' cache directory exists but has no snapshots. "
                "Re-run `python scripts/setup_model.py` to repair the download."
            )
