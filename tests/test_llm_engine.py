"""
tests/test_llm_engine.py — TextGenerationEngine lifecycle without a real model.
"""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from core.config import OracleConfig
from llm.engine import ModelNotFoundError, TextGenerationEngine


class TestEngineLifecycle(unittest.TestCase):

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.cache = Path(self._tmp.name)
        self.config = OracleConfig(backend="llm", cache_dir=str(self.cache))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_not_loaded_on_init(self) -> None:
        engine = TextGenerationEngine(self.config)
        self.assertFalse(engine.loaded)

    def test_missing_cache_raises(self) -> None:
        engine = TextGenerationEngine(self.config)
        with self.assertRaises(ModelNotFoundError):
            engine.load()
        self.assertFalse(engine.loaded)

    def test_empty_snapshot_dir_raises(self) -> None:
        model_dir = self.cache / f"models--{self.config.model_id.replace('/', '--')}" / "snapshots"
        model_dir.mkdir(parents=True)
        with self.assertRaises(ModelNotFoundError):
            TextGenerationEngine(self.config).load()

    def test_generate_loads_first(self) -> None:
        engine = TextGenerationEngine(self.config)
        with self.assertRaises(ModelNotFoundError):
            engine.generate([{"role": "user", "content": "hello"}])

    def test_unload_without_model_is_noop(self) -> None:
        engine = TextGenerationEngine(self.config)
        engine.unload()
        self.assertFalse(engine.loaded)

    def test_cache_dir_expands_home(self) -> None:
        cfg = OracleConfig(cache_dir="~/models")
        self.assertTrue(cfg.resolved_cache_dir.is_absolute())
