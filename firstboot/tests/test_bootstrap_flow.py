"""Tests for the ordered provisioning pipeline."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeSystem

from firstboot._bootstrap_config import ZFS_PACKAGE, BootstrapConfig, HostFacts
from firstboot._bootstrap_errors import StepFailedError
from firstboot._bootstrap_flow import (
    BootstrapResult,
    KeyImportOutcome,
    bootstrap,
    finalize,
)
from firstboot._host_files import sudoers_path

FACTS = HostFacts(external_ipv4="203.0.113.10", external_ipv6="2001:db8::10")


def _make_config(tmp_path: Path, **overrides: object) -> BootstrapConfig:
    defaults: dict[str, object] = {
        "hostname": "web1",
        "domain": "example.com",
        "username": "ops",
        "launchpad_account": "ops-lp",
        "sysroot": tmp_path,
    }
    defaults.update(overrides)
    return BootstrapConfig(**defaults)


def _seed_etc(root: Path) -> None:
    etc = root / "etc"
    etc.mkdir(parents=True, exist_ok=True)
    (etc / "hosts").write_text("127.0.0.1 localhost\n127.0.1.1 ubuntu\n", encoding="utf-8")
    (etc / "issue").write_text("Ubuntu 24.04.1 LTS \\n \\l\n\n", encoding="utf-8")


def test_steps_run_in_fixed_order(tmp_path: Path, fake_system: FakeSystem) -> None:
    _seed_etc(tmp_path)
    config = _make_config(tmp_path, limit_ssh=False)

    result = bootstrap(config, FACTS, fake_system.capabilities())

    assert result.completed_steps == [
        "configure_user",
        "import_ssh_keys",
        "set_hostname",
        "set_etc_issue",
        "configure_apt",
        "install_grub",
        "upgrade_packages",
        "install_packages",
        "configure_firewall",
    ]
    assert fake_system.names() == [
        "create_user",
        "set_groups",
        "import_keys",
        "lock_root_password",
        "apply_hostname",
        "grub_install",
        "update_grub",
        "refresh",
        "dist_upgrade",
        "install_packages",
        "ssh_rule",
        "enable_firewall",
    ]
    assert fake_system.ssh_rule == "allow"
    assert result.reboot_requested is True
    assert "reboot" not in fake_system.names(), "bootstrap itself must never reboot"


def test_system_files_are_written(tmp_path: Path, fake_system: FakeSystem) -> None:
    _seed_etc(tmp_path)
    bootstrap(_make_config(tmp_path), FACTS, fake_system.capabilities())

    etc = tmp_path / "etc"
    assert (etc / "hostname").read_text(encoding="utf-8") == "web1\n"
    hosts = (etc / "hosts").read_text(encoding="utf-8")
    assert "127.0.1.1" not in hosts
    assert hosts.splitlines()[-1] == "203.0.113.10 web1.example.com web1"
    issue = (etc / "issue").read_text(encoding="utf-8")
    assert "203.0.113.10 2001:db8::10" in issue
    assert (etc / "apt/apt.conf.d/99force-ipv4").exists()
    assert sudoers_path(tmp_path, "ops").read_text(encoding="utf-8").startswith("ops ALL=")


def test_empty_username_skips_user_and_policy(tmp_path: Path, fake_system: FakeSystem) -> None:
    config = _make_config(tmp_path, username="")

    result = bootstrap(config, FACTS, fake_system.capabilities())

    assert "configure_user" not in result.completed_steps
    assert "create_user" not in fake_system.names()
    assert "set_groups" not in fake_system.names()
    assert not (tmp_path / "etc/sudoers.d").exists(), "No sudo policy without a user"


def test_empty_groups_not_applied(tmp_path: Path, fake_system: FakeSystem) -> None:
    bootstrap(_make_config(tmp_path, groups=()), FACTS, fake_system.capabilities())
    assert "create_user" in fake_system.names()
    assert "set_groups" not in fake_system.names()


def test_user_receives_gecos_and_groups(tmp_path: Path, fake_system: FakeSystem) -> None:
    config = _make_config(tmp_path, gecos="Ops Team,,", groups=("adm", "sudo"))
    bootstrap(config, FACTS, fake_system.capabilities())
    assert ("create_user", "ops", "Ops Team,,") in fake_system.calls
    assert ("set_groups", "ops", ("adm", "sudo")) in fake_system.calls


def test_successful_key_import_locks_root_once(tmp_path: Path, fake_system: FakeSystem) -> None:
    result = bootstrap(_make_config(tmp_path), FACTS, fake_system.capabilities())

    assert result.key_import is KeyImportOutcome.IMPORTED
    assert ("import_keys", "ops-lp", "ops") in fake_system.calls
    assert fake_system.count("lock_root_password") == 1


def test_failed_key_import_keeps_password_login(
    tmp_path: Path,
    fake_system: FakeSystem,
    caplog: pytest.LogCaptureFixture,
) -> None:
    fake_system.fail_on.add("import_keys")

    with caplog.at_level("WARNING"):
        result = bootstrap(_make_config(tmp_path), FACTS, fake_system.capabilities())

    assert result.key_import is KeyImportOutcome.FAILED
    assert fake_system.count("lock_root_password") == 0
    assert "install_packages" in result.completed_steps, "Key import failure is not fatal"
    assert "use root password for fallback" in caplog.text


def test_missing_launchpad_account_skips_import(tmp_path: Path, fake_system: FakeSystem) -> None:
    result = bootstrap(
        _make_config(tmp_path, launchpad_account=""),
        FACTS,
        fake_system.capabilities(),
    )
    assert result.key_import is KeyImportOutcome.SKIPPED
    assert "import_keys" not in fake_system.names()
    assert "lock_root_password" not in fake_system.names()


def test_root_lock_failure_is_fatal(tmp_path: Path, fake_system: FakeSystem) -> None:
    fake_system.fail_on.add("lock_root_password")
    with pytest.raises(StepFailedError) as excinfo:
        bootstrap(_make_config(tmp_path), FACTS, fake_system.capabilities())
    assert excinfo.value.step == "import_ssh_keys"


@pytest.mark.parametrize("limit_ssh", [True, False])
def test_firewall_disabled_makes_no_calls(
    tmp_path: Path,
    fake_system: FakeSystem,
    limit_ssh: bool,
) -> None:
    config = _make_config(tmp_path, configure_firewall=False, limit_ssh=limit_ssh)

    result = bootstrap(config, FACTS, fake_system.capabilities())

    assert "configure_firewall" not in result.completed_steps
    assert "ssh_rule" not in fake_system.names()
    assert "enable_firewall" not in fake_system.names()


def test_issue_banner_can_be_skipped(tmp_path: Path, fake_system: FakeSystem) -> None:
    _seed_etc(tmp_path)
    result = bootstrap(
        _make_config(tmp_path, customize_etc_issue=False),
        FACTS,
        fake_system.capabilities(),
    )
    assert "set_etc_issue" not in result.completed_steps
    assert "203.0.113.10" not in (tmp_path / "etc/issue").read_text(encoding="utf-8")


@pytest.mark.parametrize("extras", [("software-properties-common",), ("git", "htop")])
def test_zfs_package_always_installed(
    tmp_path: Path,
    fake_system: FakeSystem,
    extras: tuple[str, ...],
) -> None:
    config = _make_config(tmp_path, zfs=True, extra_packages=extras)

    bootstrap(config, FACTS, fake_system.capabilities())

    installs = [call for call in fake_system.calls if call[0] == "install_packages"]
    assert installs == [("install_packages", (config.kernel_package, ZFS_PACKAGE, *extras))]


def test_boot_disk_passed_to_grub(tmp_path: Path, fake_system: FakeSystem) -> None:
    bootstrap(_make_config(tmp_path, boot_disk="/dev/vda"), FACTS, fake_system.capabilities())
    assert ("grub_install", "/dev/vda") in fake_system.calls


def test_failing_step_aborts_pipeline(tmp_path: Path, fake_system: FakeSystem) -> None:
    fake_system.fail_on.add("grub_install")

    with pytest.raises(StepFailedError, match="install_grub") as excinfo:
        bootstrap(_make_config(tmp_path), FACTS, fake_system.capabilities())

    assert excinfo.value.step == "install_grub"
    names = fake_system.names()
    assert "refresh" not in names, "Steps after a failure must not run"
    assert "install_packages" not in names
    assert "enable_firewall" not in names


def test_user_creation_failure_stops_before_key_import(
    tmp_path: Path,
    fake_system: FakeSystem,
) -> None:
    fake_system.fail_on.add("create_user")
    with pytest.raises(StepFailedError) as excinfo:
        bootstrap(_make_config(tmp_path), FACTS, fake_system.capabilities())
    assert excinfo.value.step == "configure_user"
    assert "import_keys" not in fake_system.names()


def test_file_write_failure_is_step_failure(tmp_path: Path, fake_system: FakeSystem) -> None:
    (tmp_path / "etc").write_text("not a directory", encoding="utf-8")
    with pytest.raises(StepFailedError) as excinfo:
        bootstrap(_make_config(tmp_path, username=""), FACTS, fake_system.capabilities())
    assert excinfo.value.step == "set_hostname"


def test_reboot_disabled_is_not_requested(tmp_path: Path, fake_system: FakeSystem) -> None:
    result = bootstrap(_make_config(tmp_path, reboot=False), FACTS, fake_system.capabilities())
    assert result.reboot_requested is False


def test_finalize_reboots_only_when_requested(fake_system: FakeSystem) -> None:
    host = fake_system.capabilities().host

    assert finalize(BootstrapResult(reboot_requested=False), host) is False
    assert fake_system.count("reboot") == 0

    assert finalize(BootstrapResult(reboot_requested=True), host) is True
    assert fake_system.count("reboot") == 1


def test_rootless_scenario_imports_for_superuser(tmp_path: Path, fake_system: FakeSystem) -> None:
    config = _make_config(
        tmp_path,
        username="",
        configure_firewall=True,
        limit_ssh=True,
    )

    bootstrap(config, FACTS, fake_system.capabilities())

    assert not (tmp_path / "etc/sudoers.d").exists()
    assert ("import_keys", "ops-lp", "root") in fake_system.calls
    assert fake_system.firewall_enabled is True
    assert fake_system.ssh_rule == "limit"


def test_non_utf8_system_files_keep_their_bytes(tmp_path: Path, fake_system: FakeSystem) -> None:
    etc = tmp_path / "etc"
    etc.mkdir()
    (etc / "hosts").write_bytes(b"127.0.0.1 localhost\n127.0.1.1 ubuntu\n# caf\xe9\n")
    (etc / "issue").write_bytes(b"Ubuntu 24.04.1 LTS \xff\n")

    result = bootstrap(_make_config(tmp_path, username=""), FACTS, fake_system.capabilities())

    assert "set_hostname" in result.completed_steps
    assert "set_etc_issue" in result.completed_steps
    assert (etc / "hosts").read_bytes() == (
        b"127.0.0.1 localhost\n# caf\xe9\n203.0.113.10 web1.example.com web1\n"
    )
    assert (etc / "issue").read_bytes() == (
        b"Ubuntu 24.04.1 LTS \xff 203.0.113.10 2001:db8::10\n"
    )
