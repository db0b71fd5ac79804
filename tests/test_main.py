import pytest

from conftest import FakeProbe
from greengrass_provisioning import main as cli
from greengrass_provisioning.status import load_status


@pytest.fixture
def quiet_cli(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: kwargs.get("log_path"))
    monkeypatch.setattr(cli, "build_probe", lambda settings: FakeProbe())
    monkeypatch.setattr(cli, "discover_device_identifiers", lambda: ["aa:bb:cc:dd:ee:ff"])
    monkeypatch.delenv("TEST_MODE", raising=False)
    monkeypatch.delenv("IOT_ENDPOINT", raising=False)


def test_discover_identifiers_from_mac(tmp_path):
    (tmp_path / "eth0").mkdir()
    (tmp_path / "eth0" / "address").write_text("aa:bb:cc:dd:ee:ff\n")

    ids = cli.discover_device_identifiers(str(tmp_path), hostname="edge-01")

    assert ids == ["aa:bb:cc:dd:ee:ff", "aabbccddeeff", "edge-01"]


def test_discover_identifiers_without_mac(tmp_path):
    assert cli.discover_device_identifiers(str(tmp_path), hostname="edge-01") == ["edge-01"]


def test_missing_required_arguments():
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 2


def test_greengrass_path_defaults_to_standard_root():
    args = cli.build_parser().parse_args(["-d", "devices.db"])

    assert args.greengrass_path == "/greengrass/v2"
    assert args.status_file == "/var/run/greengrass-provisioning.status"


def test_missing_database_file(tmp_path):
    with pytest.raises(SystemExit) as exc:
        cli.main(["-d", str(tmp_path / "nope.db"), "-g", str(tmp_path / "gg")])
    assert exc.value.code == 2


def test_dry_run_end_to_end_then_idempotent(tmp_path, device_db, quiet_cli):
    status_file = tmp_path / "run" / "provisioning.status"
    argv = [
        "-d", device_db,
        "-g", str(tmp_path / "gg"),
        "-s", str(status_file),
        "--log", str(tmp_path / "provisioning.log"),
        "--dry-run",
    ]

    assert cli.main(argv) == 0
    assert load_status(str(status_file))["status"] == "COMPLETED"
    assert (tmp_path / "gg" / "certs" / "Thing1.private.key").is_file()
    assert (tmp_path / "gg" / "lib" / "Greengrass.jar").is_file()

    assert cli.main(argv) == 0
    status = load_status(str(status_file))
    assert status["status"] == "ALREADY_PROVISIONED"
    assert status["message"] == "Already provisioned as Thing1"


def test_device_id_flag(tmp_path, device_db, quiet_cli):
    status_file = tmp_path / "provisioning.status"

    code = cli.main([
        "-d", device_db,
        "-g", str(tmp_path / "gg"),
        "-s", str(status_file),
        "--device-id", "default",
        "--dry-run",
    ])

    assert code == 0
    assert (tmp_path / "gg" / "certs" / "DefaultThing.cert.pem").is_file()


def test_bad_settings_file(tmp_path, device_db, quiet_cli):
    settings = tmp_path / "settings.yaml"
    settings.write_text("- not\n- a mapping\n")
    status_file = tmp_path / "provisioning.status"

    code = cli.main([
        "-d", device_db,
        "-g", str(tmp_path / "gg"),
        "-s", str(status_file),
        "--config", str(settings),
    ])

    assert code == 1
    status = load_status(str(status_file))
    assert status["status"] == "ERROR"
    assert status["message"] == "Invalid settings file"


def test_no_connectivity_exit_code(tmp_path, device_db, quiet_cli, monkeypatch):
    monkeypatch.setattr(cli, "build_probe", lambda settings: FakeProbe(connected=False, error="DNS resolution failed"))

    code = cli.main(["-d", device_db, "-g", str(tmp_path / "gg"), "-s", str(tmp_path / "s.status")])

    assert code == 2
