from tracking import t
import logging

from logging_config import RUN_LOGGERS, setup_logging


def test_setup_logging_creates_log_files(tmp_path):
    t('tests.unit.test_logging_config.test_setup_logging_creates_log_files')
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        log_dir = setup_logging(production_mode=False, log_dir=str(tmp_path / "logs"))
        logging.getLogger("OrchestrationEngine").info("run started")
        for handler in root.handlers:
            handler.flush()
        for handler in logging.getLogger(RUN_LOGGERS[0]).handlers:
            handler.flush()

        files = {path.name for path in (tmp_path / "logs").iterdir()}
        assert log_dir == str(tmp_path / "logs")
        assert {"rcbot.log", "rcbot_debug.log", "rcbot_errors.log", "automation_runs.log"} <= files
        assert "run started" in (tmp_path / "logs" / "automation_runs.log").read_text(encoding="utf-8")
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for name in RUN_LOGGERS:
            component = logging.getLogger(name)
            for handler in list(component.handlers):
                component.removeHandler(handler)
                handler.close()
            component.setLevel(logging.NOTSET)
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
