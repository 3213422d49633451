import pytest

from gptfailsafe import debug as dbg


@pytest.fixture(autouse=True)
def _reset():
    dbg.set_debug(False)
    dbg.set_syslog(False)
    yield
    dbg.set_debug(False)
    dbg.set_syslog(False)


def test_get_debug_follows_set_debug():
    dbg.set_debug(1)
    assert dbg.get_debug() is True
    dbg.set_debug(0)
    assert dbg.get_debug() is False


def test_debug_silent_when_disabled(capsys):
    dbg.debug("hidden %d\n", 1)
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == ""


def test_debug_prints_to_stdout_when_enabled(capsys):
    dbg.set_debug(True)
    dbg.debug("value=%d name=%s\n", 42, "tz")
    captured = capsys.readouterr()
    assert captured.out == "value=42 name=tz\n"
    assert captured.err == ""


def test_error_goes_to_stderr(capsys):
    dbg.error("bad %s\n", "crc")
    captured = capsys.readouterr()
    assert captured.err == "bad crc\n"
    assert captured.out == ""


def test_info_goes_to_stderr_regardless_of_debug(capsys):
    dbg.info("note\n")
    captured = capsys.readouterr()
    assert captured.err == "note\n"


def test_message_without_args_is_not_formatted(capsys):
    dbg.error("100%\n")
    assert capsys.readouterr().err == "100%\n"