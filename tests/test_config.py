import pytest

from dispgate.config import Config, get_config
from dispgate.logger import EnhancedLogger


@pytest.fixture
def quiet_logger(tmp_path):
    log = EnhancedLogger(log_directory=str(tmp_path / "logs"))
    log.enable_console_output(False)
    return log


@pytest.fixture
def config(quiet_logger):
    return Config(logger=quiet_logger)


def _write(tmp_path, text, name="server.conf"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_load_parses_and_trims(config, tmp_path):
    path = _write(tmp_path, "# comment\n\n  disp.port =  9090 \nname\t=\tvalue with spaces\t\n")
    config.load(path)
    assert config.get_string("disp.port") == "9090"
    assert config.get_string("name") == "value with spaces"
    assert config.get_int("disp.port", 8080) == 9090


def test_value_keeps_later_equals_signs(config, tmp_path):
    config.load(_write(tmp_path, "url=http://host/?a=b\n"))
    assert config.get_string("url") == "http://host/?a=b"


def test_lines_without_value_are_skipped(config, tmp_path):
    config.load(_write(tmp_path, "empty=\nnoequals\n#hidden=1\n"))
    assert "empty" not in config
    assert "noequals" not in config
    assert "#hidden" not in config


def test_missing_key_defaults(config):
    assert config.get_string("absent", "dflt") == "dflt"
    assert config.get_int("absent", 8080) == 8080
    assert config.get_bool("absent", True) is True


def test_get_int_uses_leading_digits(config, tmp_path):
    config.load(_write(tmp_path, "a=42abc\nb=-7\nc=abc\nd=99999999999\n"))
    assert config.get_int("a") == 42
    assert config.get_int("b") == -7
    assert config.get_int("c", 5) == 5
    assert config.get_int("d", 60) == 60


@pytest.mark.parametrize(
    "raw, expected",
    [("true", True), ("YES", True), ("1", True), ("False", False), ("no", False), ("0", False)],
)
def test_get_bool_values(config, tmp_path, raw, expected):
    config.load(_write(tmp_path, f"flag={raw}\n"))
    assert config.get_bool("flag", not expected) is expected


def test_get_bool_invalid_returns_default(config, tmp_path):
    config.load(_write(tmp_path, "flag=maybe\n"))
    assert config.get_bool("flag", True) is True
    assert config.get_bool("flag", False) is False


def test_load_merges_files(config, tmp_path):
    config.load(_write(tmp_path, "a=1\nb=2\n", "one.conf"))
    config.load(_write(tmp_path, "b=3\n", "two.conf"))
    assert config.get_int("a") == 1
    assert config.get_int("b") == 3


def test_load_missing_file_raises(config, tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load(str(tmp_path / "missing.conf"))


def test_get_config_is_singleton(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    first = get_config()
    second = get_config()
    assert first is second
    first.load(_write(tmp_path, "singleton.check.key=shared\n"))
    assert second.get_string("singleton.check.key") == "shared"