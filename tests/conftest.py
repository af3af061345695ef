"""Pytest configuration and shared fixtures."""

import logging
import os

import pytest

from plan_dag.core.logging_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_plan_dag_logger():
    """Drop handlers the CLI attaches so they do not outlive CliRunner streams."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    """Keep PLAN_DAG_* variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("PLAN_DAG_"):
            monkeypatch.delenv(key)
