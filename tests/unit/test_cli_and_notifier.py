import subprocess

from app.models.schemas import RenameMode
from domains.organizing import notifier as notifier_module
from domains.organizing.notifier import DesktopNotifier, LogNotifier
from scripts.run_organizer import build_configs, main, parse_args


def test_build_configs_from_arguments(tmp_path):
    first = tmp_path / "downloads"
    second = tmp_path / "scans"
    args = parse_args([
        "--folder", str(first),
        "--folder", str(second),
        "--prompt", "Invoices by year",
        "--extensions", "pdf, .PNG,",
        "--depth", "-1",
        "--rename", "rule-based",
        "--rename-rule", "<date>_<vendor>",
        "--no-extract",
    ])

    configs = build_configs(args)

    assert [config.path.name for config in configs] == ["downloads", "scans"]
    config = configs[0]
    assert config.prompt == "Invoices by year"
    assert config.extensions == ["pdf", "png"]
    assert config.watch_depth == -1
    assert not config.extraction_enabled
    assert config.rename_config.enabled
    assert config.rename_config.mode == RenameMode.RULE_BASED
    assert config.rename_config.rule == "<date>_<vendor>"
    assert configs[0].id != configs[1].id


def test_build_configs_defaults(tmp_path):
    config = build_configs(parse_args(["--folder", str(tmp_path)]))[0]

    assert config.watch_depth == 0
    assert config.extensions == []
    assert config.extraction_enabled
    assert not config.rename_config.enabled


def test_main_rejects_missing_folder(tmp_path):
    assert main(["--folder", str(tmp_path / "missing")]) == 1


def test_log_notifier_does_not_raise():
    LogNotifier().notify("File organized", "a.pdf → invoices")


def test_desktop_notifier_runs_notify_send(monkeypatch):
    calls = []
    monkeypatch.setattr(notifier_module.platform, "system", lambda: "Linux")
    monkeypatch.setattr(notifier_module.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(notifier_module.subprocess, "run", lambda command, **kwargs: calls.append(command))

    DesktopNotifier().notify("File organized", "a.pdf → invoices")

    assert calls == [["notify-send", "--app-name", "Folder Sorter", "File organized", "a.pdf → invoices"]]


def test_desktop_notifier_escapes_applescript(monkeypatch):
    calls = []
    monkeypatch.setattr(notifier_module.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(notifier_module.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(notifier_module.subprocess, "run", lambda command, **kwargs: calls.append(command))

    DesktopNotifier().notify("Done", 'say "hi"')

    assert calls[0][:2] == ["osascript", "-e"]
    assert 'display notification "say \\"hi\\""' in calls[0][2]


def test_desktop_notifier_swallows_failures(monkeypatch):
    def fail(command, **kwargs):
        raise subprocess.CalledProcessError(1, command)

    monkeypatch.setattr(notifier_module.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(notifier_module.subprocess, "run", fail)

    DesktopNotifier().notify("Done", "body")


def test_desktop_notifier_without_tools(monkeypatch):
    calls = []
    monkeypatch.setattr(notifier_module.shutil, "which", lambda name: None)
    monkeypatch.setattr(notifier_module.subprocess, "run", lambda command, **kwargs: calls.append(command))

    DesktopNotifier().notify("Done", "body")

    assert calls == []
