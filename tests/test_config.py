import pytest

from kernelsim.config import (
    Config,
    config_path_from_args,
    create_logger,
    load_config,
    parse_config,
)

SAMPLE = """\
# kernel settings
IP_KERNEL=127.0.0.1
PUERTO_ESCUCHA=8003

QUANTUM=2000
RECURSOS=[RA, RB,RC]
INSTANCIAS_RECURSOS=[1,2,1]
VACIO=[]
"""


def _close(logger):
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_parse_text_and_integer():
    config = parse_config(SAMPLE)
    assert config.text("IP_KERNEL") == "127.0.0.1"
    assert config.integer("QUANTUM") == 2000
    assert config.integer("PUERTO_ESCUCHA") == 8003


def test_comments_and_blank_lines_are_skipped():
    config = parse_config(SAMPLE)
    assert all(not key.startswith("#") for key in config.values)
    assert len(config.values) == 6


def test_arrays_are_trimmed():
    config = parse_config(SAMPLE)
    assert config.array("RECURSOS") == ["RA", "RB", "RC"]
    assert [int(n) for n in config.array("INSTANCIAS_RECURSOS")] == [1, 2, 1]
    assert config.array("VACIO") == []


def test_missing_key_raises():
    with pytest.raises(KeyError):
        parse_config(SAMPLE).text("IP_MEMORIA")


def test_non_integer_raises():
    with pytest.raises(ValueError):
        parse_config(SAMPLE).integer("IP_KERNEL")


def test_non_array_raises():
    with pytest.raises(ValueError):
        parse_config(SAMPLE).array("QUANTUM")


def test_value_may_contain_equals():
    config = Config()
    config = parse_config("KEY=a=b\n")
    assert config.text("KEY") == "a=b"


def test_load_config_from_file(tmp_path):
    path = tmp_path / "kernel.config"
    path.write_text(SAMPLE)
    assert load_config(path) == parse_config(SAMPLE)


def test_load_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.config")


def test_logger_writes_to_file(tmp_path):
    log_file = tmp_path / "kernel.log"
    logger = create_logger(log_file, "KERNEL", False, "DEBUG")
    logger.debug("process created")
    _close(logger)
    content = log_file.read_text()
    assert "process created" in content
    assert "KERNEL" in content


def test_logger_respects_level(tmp_path):
    log_file = tmp_path / "memory.log"
    logger = create_logger(log_file, "MEMORIA", False, "INFO")
    logger.debug("hidden")
    logger.info("shown")
    _close(logger)
    content = log_file.read_text()
    assert "shown" in content
    assert "hidden" not in content


def test_logger_echoes_to_console(tmp_path, capsys):
    logger = create_logger(tmp_path / "k.log", "KERNEL", True, "INFO")
    logger.info("console line")
    _close(logger)
    assert "console line" in capsys.readouterr().out


def test_loggers_with_same_name_are_independent(tmp_path):
    first = create_logger(tmp_path / "a.log", "KERNEL", False, "INFO")
    second = create_logger(tmp_path / "b.log", "KERNEL", False, "INFO")
    first.info("only first")
    _close(first)
    _close(second)
    assert "only first" not in (tmp_path / "b.log").read_text()


def test_config_path_from_args():
    assert config_path_from_args(["kernel.config", "extra"]) == "kernel.config"


def test_config_path_missing_raises():
    with pytest.raises(ValueError):
        config_path_from_args([])