"""Tests for jax_slicemap.core module."""

from __future__ import annotations

import logging
import os

import pytest

from jax_slicemap.core import (
    AxisError,
    DimensionError,
    ShapeError,
    SliceMapError,
    WorkerError,
    default_workers,
    get_logger,
    load_config,
    load_log_level,
    load_workers,
)


class TestErrors:
    """Tests for the error taxonomy."""

    def test_hierarchy(self):
        assert issubclass(DimensionError, SliceMapError)
        assert issubclass(DimensionError, ValueError)
        assert issubclass(ShapeError, ValueError)
        assert issubclass(AxisError, IndexError)
        assert issubclass(WorkerError, RuntimeError)

    def test_worker_error_keeps_original(self):
        original = ZeroDivisionError("division by zero")
        err = WorkerError(range(3, 6), original)
        assert err.columns == range(3, 6)
        assert err.original is original
        assert "3..5" in str(err)
        assert "ZeroDivisionError" in str(err)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        cfg = load_config({})
        assert cfg.workers == (os.cpu_count() or 1)
        assert cfg.log_level == logging.WARNING

    def test_workers_from_env(self):
        assert load_config({"JAX_SLICEMAP_WORKERS": "4"}).workers == 4

    def test_log_level_case_insensitive(self):
        cfg = load_config({"JAX_SLICEMAP_LOG_LEVEL": "debug"})
        assert cfg.log_level == logging.DEBUG

    @pytest.mark.parametrize("value", ["0", "-2", "many"])
    def test_invalid_workers(self, value):
        with pytest.raises(ValueError):
            load_config({"JAX_SLICEMAP_WORKERS": value})

    def test_invalid_log_level(self):
        with pytest.raises(ValueError):
            load_config({"JAX_SLICEMAP_LOG_LEVEL": "chatty"})

    def test_default_workers_reads_environment(self, monkeypatch):
        monkeypatch.setenv("JAX_SLICEMAP_WORKERS", "3")
        assert default_workers() == 3


class TestGetLogger:
    """Tests for get_logger."""

    def test_namespaced(self):
        assert get_logger("jax_slicemap.mapping").name == "jax_slicemap.mapping"

    def test_foreign_name_nested(self):
        assert get_logger("extras").name == "jax_slicemap.extras"

    def test_single_handler(self):
        get_logger("jax_slicemap.a")
        get_logger("jax_slicemap.b")
        assert len(logging.getLogger("jax_slicemap").handlers) == 1

    def test_bad_workers_setting_does_not_block_logging(self, monkeypatch):
        monkeypatch.setenv("JAX_SLICEMAP_WORKERS", "many")
        monkeypatch.setenv("JAX_SLICEMAP_LOG_LEVEL", "info")
        root = logging.getLogger("jax_slicemap")
        monkeypatch.setattr(root, "handlers", [])
        monkeypatch.setattr(root, "level", root.level)
        logger = get_logger("jax_slicemap.fresh")
        assert logger.getEffectiveLevel() == logging.INFO
        assert len(root.handlers) == 1


class TestSettingReaders:
    """Tests for load_workers and load_log_level."""

    def test_workers_ignores_log_level(self):
        assert load_workers({"JAX_SLICEMAP_WORKERS": "2", "JAX_SLICEMAP_LOG_LEVEL": "chatty"}) == 2

    def test_log_level_ignores_workers(self):
        assert load_log_level({"JAX_SLICEMAP_WORKERS": "many"}) == logging.WARNING

    def test_bad_workers_fails_default_workers(self, monkeypatch):
        monkeypatch.setenv("JAX_SLICEMAP_WORKERS", "many")
        with pytest.raises(ValueError, match="JAX_SLICEMAP_WORKERS"):
            default_workers()
