# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json
import logging

import pytest

from fakes.fake_logger import FakeLogger
from vcmigrate.core.logger import TRACE, EmojiFormatter, JsonFormatter, Log, LogStyle
from vcmigrate.core.logging_utils import emoji_for_level, log_step


def _record(msg, level=logging.INFO, ctx=None):
    rec = logging.LogRecord("vcmigrate", level, __file__, 10, msg, (), None)
    if ctx is not None:
        rec.ctx = ctx
    return rec


@pytest.mark.unit
class TestLevels:
    @pytest.mark.parametrize(
        "verbose,quiet,expected",
        [
            (0, 0, logging.INFO),
            (2, 0, logging.DEBUG),
            (3, 0, TRACE),
            (3, 1, logging.WARNING),
            (0, 2, logging.ERROR),
        ],
    )
    def test_level_from_flags(self, verbose, quiet, expected):
        assert Log._level_from_flags(verbose, quiet) == expected


@pytest.mark.unit
class TestFormatters:
    def test_volume_tag_and_trailing_context(self):
        fmt = EmojiFormatter(LogStyle(color=False, unicode=False))
        line = fmt.format(_record("Scaling down", ctx={"pv": "pv-1", "ns": "default", "kind": "Deployment"}))

        assert "INFO" in line
        assert line.endswith("[pv-1] Scaling down kind=Deployment ns=default")

    def test_no_context(self):
        line = EmojiFormatter(LogStyle(color=False, unicode=False)).format(_record("Rollback"))
        assert line.endswith("Rollback")
        assert "[" not in line

    def test_json_formatter(self):
        line = JsonFormatter().format(_record("relocated", ctx={"pv": "pv-1", "vm": "carrier"}))
        obj = json.loads(line)

        assert obj["msg"] == "relocated"
        assert obj["level"] == "INFO"
        assert obj["pv"] == "pv-1"
        assert obj["ctx"] == {"vm": "carrier"}


@pytest.mark.unit
class TestSetup:
    def test_json_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        logger = Log.setup(0, str(log_file), json_logs=True, logger_name="vcmigrate.test-setup")
        Log.bind(logger, pv="pv-7").info("hello %s", "world")
        for h in logger.handlers:
            h.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        obj = json.loads(lines[-1])
        assert obj["msg"] == "hello world"
        assert obj["pv"] == "pv-7"
        assert "ctx" not in obj

    def test_setup_replaces_handlers(self):
        name = "vcmigrate.test-handlers"
        Log.setup(0, logger_name=name)
        logger = Log.setup(2, logger_name=name)

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_bind_merges_context(self):
        log = Log.bind(logging.getLogger("vcmigrate.test-bind"), pv="pv-1")
        nested = Log.bind(log, step="quiesce")

        assert nested.extra["ctx"] == {"pv": "pv-1", "step": "quiesce"}


@pytest.mark.unit
class TestLogStep:
    def test_success(self):
        log = FakeLogger()
        with log_step(log, "Relocating carrier VM"):
            pass

        msgs = log.messages("info")
        assert msgs[0].endswith("Relocating carrier VM ...")
        assert "Relocating carrier VM done" in msgs[1]

    def test_failure_is_logged_and_reraised(self):
        log = FakeLogger()
        with pytest.raises(RuntimeError):
            with log_step(log, "Waiting for detach"):
                raise RuntimeError("timeout")

        assert any("Waiting for detach failed" in m and "timeout" in m for m in log.messages("error"))

    def test_emoji_for_level(self):
        assert emoji_for_level(logging.ERROR) != emoji_for_level(logging.INFO)
        assert emoji_for_level(logging.DEBUG) == emoji_for_level(TRACE)
