import pytest

from dmroommap import main
from dmroommap.core.registry import DMRoomMapRegistry, shared_registry
from dmroommap.interfaces.matrix_thread import MatrixConfig


def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "matrix:\n"
        "  homeserver: https://matrix.example.org\n"
        "  user_id: '@me:example.org'\n"
        "  access_token: tok\n"
        "  device_id: DEV\n",
        encoding="utf-8",
    )

    cfg = main.load_config(path)

    assert cfg["matrix"]["device_id"] == "DEV"


def test_load_config_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main.load_config(tmp_path / "absent.yaml")
    assert exc.value.code == 1


def test_build_matrix_config_with_token():
    cfg = {"matrix": {
        "homeserver": "https://matrix.example.org",
        "user_id": "@me:example.org",
        "access_token": "tok",
        "device_id": "DEV",
    }}

    matrix_cfg = main.build_matrix_config(cfg)

    assert matrix_cfg.access_token == "tok"
    assert matrix_cfg.password == ""
    assert matrix_cfg.device_name == "dmroommap"


@pytest.mark.parametrize("raw", [
    None,
    {"homeserver": "https://matrix.example.org", "user_id": "@me:example.org"},
    {"user_id": "@me:example.org", "password": "pw"},
])
def test_build_matrix_config_incomplete(raw):
    assert main.build_matrix_config({"matrix": raw}) is None


def _matrix_cfg():
    return MatrixConfig(homeserver="https://matrix.example.org", user_id="@me:example.org",
                        access_token="tok", device_id="DEV")


def test_build_components_uses_shared_registry():
    matrix, web_iface = main.build_components({"web": {"enabled": True, "port": 9999}}, _matrix_cfg())

    assert matrix._registry is shared_registry
    assert web_iface._registry is shared_registry
    assert web_iface._bus is matrix._bus
    assert web_iface._port == 9999


def test_build_components_web_disabled_by_default():
    registry = DMRoomMapRegistry()

    matrix, web_iface = main.build_components({}, _matrix_cfg(), registry)

    assert web_iface is None
    assert matrix._registry is registry
    assert matrix._bus is not None
