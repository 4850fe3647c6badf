import json
from pathlib import Path

import yaml

from shardconsole.cli import main
from shardconsole.config.loader import DEFAULT_CONFIG_PATH
from shardconsole.core.credentials import hash_password


def _write_config(tmp_path: Path, **overrides: object) -> Path:
    data = yaml.safe_load(DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"))
    data["listener"].update({"host": "127.0.0.1", "port_start": 0, "port_end": 0})
    data["audit"]["path"] = str(tmp_path / "audit.log")
    data.update(overrides)
    config_path = tmp_path / "shardconsole.yml"
    config_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return config_path


def test_init_command_writes_config(tmp_path: Path) -> None:
    config_path = tmp_path / "shardconsole.yml"
    rc = main(["init", "--config", str(config_path)])
    assert rc == 0
    assert config_path.exists()
    assert main(["init", "--config", str(config_path)]) == 1
    assert main(["init", "--config", str(config_path), "--force"]) == 0


def test_show_config_redacts_secrets(capsys) -> None:
    rc = main(["show-config", "--config", str(DEFAULT_CONFIG_PATH)])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["listener"]["port_start"] == 6003
    assert payload["auth"]["password_salt"] == "***"
    assert all(operator["password_digest"] == "***" for operator in payload["auth"]["operators"])


def test_hash_password_with_explicit_salt(capsys) -> None:
    rc = main(["hash-password", "s3cret", "--salt", "pepper"])
    assert rc == 0
    assert capsys.readouterr().out.strip() == hash_password("s3cret", "pepper")


def test_hash_password_uses_config_salt(capsys) -> None:
    rc = main(["hash-password", "changeme", "--config", str(DEFAULT_CONFIG_PATH)])
    assert rc == 0
    assert capsys.readouterr().out.strip() == "ytv4gIKRbE5gMI08PxAGV1ZqboS3xLkbDBbsfU/qzk8="


def test_doctor_passes_for_defaults(capsys) -> None:
    rc = main(["doctor", "--config", str(DEFAULT_CONFIG_PATH), "--skip-port-probe"])
    assert rc == 0
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is True


def test_up_once_starts_and_stops(tmp_path: Path, capsys) -> None:
    config_path = _write_config(tmp_path)
    rc = main(["up", "--config", str(config_path), "--once"])
    assert rc == 0
    status = json.loads(capsys.readouterr().out)
    assert status["running"] is True
    assert status["endpoint"]["port"] > 0
    assert status["sessions"]["capacity"] == 5
    assert "Console stopped" in (tmp_path / "audit.log").read_text(encoding="utf-8")


def test_up_refuses_default_credentials_outside_development(tmp_path: Path, capsys) -> None:
    config_path = _write_config(tmp_path, environment="production")
    rc = main(["up", "--config", str(config_path), "--once"])
    assert rc == 1
    assert "default credentials" in capsys.readouterr().err


def test_missing_config_is_reported(tmp_path: Path, capsys) -> None:
    rc = main(["show-config", "--config", str(tmp_path / "missing.yml")])
    assert rc == 1
    assert "does not exist" in capsys.readouterr().err
