from click.testing import CliRunner

from unpin import __version__
from unpin.__main__ import cli
from unpin.bypass.strategies import strategy_keys


def test_strategies_lists_every_key():
    result = CliRunner().invoke(cli, ['strategies'])

    assert result.exit_code == 0
    for key in strategy_keys():
        assert key in result.output


def test_version():
    result = CliRunner().invoke(cli, ['--version'])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_disable_rejects_unknown_skip_key():
    result = CliRunner().invoke(cli, ['disable', 'com.example.app', '--skip', 'okhttp'])

    assert result.exit_code == 2
    assert "okhttp" in result.output
