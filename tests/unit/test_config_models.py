import pytest
from pathlib import Path
from pydantic import ValidationError
from convwatch.config.loader import load_config
from convwatch.config.models import (
    AppConfig, ConversionConfig, DEFAULT_EXTENSIONS, ServerConfig, WatchConfig
)

def test_config_defaults():
    config = AppConfig()
    assert config.watch.directory == Path("/Conversions")
    assert config.watch.extensions == DEFAULT_EXTENSIONS
    assert len(config.watch.extensions) == 22
    assert config.watch.poll_interval_s == 0.1
    assert config.watch.queue_size == 100
    assert config.conversion.video_codec == "libx264"
    assert config.conversion.container == "mp4"
    assert config.server.port == 8080
    assert config.server.shutdown_timeout_s == 5.0
    assert config.general.debug is False

def test_output_dir_defaults_inside_watch_dir():
    config = AppConfig(watch={"directory": "/data/in"})
    assert config.output_dir == Path("/data/in/Converted")

def test_output_dir_override():
    config = AppConfig(conversion={"output_dir": "/data/out"})
    assert config.output_dir == Path("/data/out")

def test_output_dir_must_differ_from_watch_dir(tmp_path):
    with pytest.raises(ValidationError, match="must differ from watch.directory"):
        AppConfig(watch={"directory": tmp_path}, conversion={"output_dir": tmp_path})

def test_output_dir_compared_after_resolving(tmp_path):
    with pytest.raises(ValidationError):
        AppConfig(watch={"directory": tmp_path}, conversion={"output_dir": tmp_path / "sub" / ".."})

def test_extensions_get_leading_dot_but_keep_case():
    watch = WatchConfig(extensions=["mp4", ".MKV", " avi "])
    assert watch.extensions == [".mp4", ".MKV", ".avi"]

def test_empty_extensions_rejected():
    with pytest.raises(ValidationError):
        WatchConfig(extensions=[])

def test_invalid_poll_interval():
    with pytest.raises(ValidationError):
        WatchConfig(poll_interval_s=0)

def test_invalid_queue_size():
    with pytest.raises(ValidationError):
        WatchConfig(queue_size=0)

def test_invalid_container():
    with pytest.raises(ValidationError):
        ConversionConfig(container="avi")

def test_container_extension():
    assert ConversionConfig(container="matroska").output_extension == ".mkv"
    assert ConversionConfig().output_extension == ".mp4"

def test_copy_timeout_must_cover_settle_interval():
    with pytest.raises(ValidationError):
        ConversionConfig(settle_interval_s=10, copy_timeout_s=5)

def test_invalid_port():
    with pytest.raises(ValidationError):
        ServerConfig(port=70000)

def test_load_config(config_yaml_path, tmp_path):
    config = load_config(config_yaml_path)
    assert config.general.debug is True
    assert config.watch.directory == tmp_path / "incoming"
    assert config.watch.extensions == [".mp4", ".mkv"]
    assert config.watch.queue_size == 10
    assert config.conversion.video_codec == "libx265"
    assert config.conversion.output_extension == ".mkv"
    assert config.server.port == 9090
    # untouched sections keep their defaults
    assert config.server.host == "0.0.0.0"

def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")

def test_load_config_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    config = load_config(path)
    assert config.watch.queue_size == 100

def test_load_config_root_extensions_shorthand(tmp_path):
    path = tmp_path / "short.yaml"
    path.write_text("extensions: [mov, .ts]\n")
    config = load_config(path)
    assert config.watch.extensions == [".mov", ".ts"]

def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(path)
