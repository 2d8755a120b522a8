import os

from capturelab.config import Config, DEFAULT_PORT


def test_defaults():
    config = Config.from_env({})

    assert config.port == DEFAULT_PORT
    assert config.smoothing == 3
    assert config.prefer_native
    assert config.store == "json"
    assert config.data_dir == os.path.expanduser("~/.local/share/capturelab/captures")


def test_values_from_environment(tmp_path):
    config = Config.from_env({
        "CAPTURELAB_DATA_DIR": str(tmp_path),
        "CAPTURELAB_HOST": "127.0.0.1",
        "CAPTURELAB_PORT": "8080",
        "CAPTURELAB_SMOOTHING": "6",
        "CAPTURELAB_PREFER_NATIVE": "no",
        "CAPTURELAB_STORE": "memory",
    })

    assert (config.data_dir, config.host, config.port) == (str(tmp_path), "127.0.0.1", 8080)
    assert config.smoothing == 6
    assert not config.prefer_native
    assert config.store == "memory"


def test_invalid_values_fall_back(caplog):
    config = Config.from_env({
        "CAPTURELAB_PORT": "http",
        "CAPTURELAB_SMOOTHING": "0",
        "CAPTURELAB_PREFER_NATIVE": "maybe",
        "CAPTURELAB_STORE": "sqlite",
    })

    assert config.port == DEFAULT_PORT
    assert config.smoothing == 3
    assert config.prefer_native
    assert config.store == "json"
    assert "CAPTURELAB_PORT" in caplog.text
