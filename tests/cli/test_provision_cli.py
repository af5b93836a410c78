from __future__ import annotations

from pathlib import Path

import pytest

from meter_provisioning.cli import provision as provision_cli
from meter_provisioning.config import AppSettings
from meter_provisioning.errors import ClassifiedRequestError, classify_error
from meter_provisioning.workflow import WorkflowController
from tests.workflow.conftest import (
    StaticDefaultsSource,
    StaticOuiAllowList,
    StubDirectoryClient,
)


def test_cli_provisions_single_address(capsys: pytest.CaptureFixture[str]) -> None:
    directory_client = StubDirectoryClient()

    exit_code = provision_cli.main(
        ["a1b2c3000001", "--count", "1"],
        controller_factory=_factory(directory_client),
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "A1:B2:C3:00:00:01  not-found" in out
    assert "provisioned 1/1 addresses" in out
    assert [call.mac for call in directory_client.provision_calls] == ["A1:B2:C3:00:00:01"]


def test_cli_declined_confirmation_exits_without_provisioning(
    capsys: pytest.CaptureFixture[str],
) -> None:
    directory_client = StubDirectoryClient(found={"A1:B2:C3:00:00:01"})
    prompts: list[str] = []

    def decline(prompt: str) -> bool:
        prompts.append(prompt)
        return False

    exit_code = provision_cli.main(
        ["A1:B2:C3:00:00:00", "--count", "4"],
        controller_factory=_factory(directory_client),
        confirm=decline,
    )

    assert exit_code == 1
    assert len(prompts) == 1
    assert "A1:B2:C3:00:00:01 already registered" in prompts[0]
    assert "provisioning cancelled" in capsys.readouterr().out
    assert directory_client.provision_calls == []


def test_cli_yes_flag_skips_confirmation_prompt(capsys: pytest.CaptureFixture[str]) -> None:
    directory_client = StubDirectoryClient(found={"A1:B2:C3:00:00:01"})

    def fail_prompt(prompt: str) -> bool:
        raise AssertionError(f"unexpected prompt: {prompt}")

    exit_code = provision_cli.main(
        ["A1:B2:C3:00:00:00", "--count", "4", "--yes"],
        controller_factory=_factory(directory_client),
        confirm=fail_prompt,
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "A1:B2:C3:00:00:01  found" in out
    assert "account=acct" in out
    assert "provisioned 4/4 addresses" in out


def test_cli_reports_partial_failure(capsys: pytest.CaptureFixture[str]) -> None:
    directory_client = StubDirectoryClient(
        provision_failures={
            "A1:B2:C3:00:00:02": classify_error("Validation failed: MAC already exists")
        }
    )

    exit_code = provision_cli.main(
        ["A1:B2:C3:00:00:00", "--count", "4"],
        controller_factory=_factory(directory_client),
    )

    assert exit_code == 1
    out = capsys.readouterr().out
    assert "provisioned 3/4 addresses" in out
    assert (
        "failed A1:B2:C3:00:00:02: Validation Error: The request contains invalid data." in out
    )


def test_cli_prints_status_banner_for_failed_lookup(capsys: pytest.CaptureFixture[str]) -> None:
    directory_client = StubDirectoryClient(
        lookup_failures={
            "A1:B2:C3:00:00:01": ClassifiedRequestError(
                classify_error("Simulated server error (5xx)")
            )
        }
    )

    provision_cli.main(
        ["A1:B2:C3:00:00:01", "--count", "1"],
        controller_factory=_factory(directory_client),
    )

    out = capsys.readouterr().out
    assert "A1:B2:C3:00:00:01  unknown" in out
    assert "status check failed: Server Error:" in out
    assert "(retryable)" in out


def test_cli_rejects_unapproved_oui(capsys: pytest.CaptureFixture[str]) -> None:
    directory_client = StubDirectoryClient()

    exit_code = provision_cli.main(
        ["A1:B2:C4:00:00:01", "--count", "1"],
        controller_factory=_factory(directory_client),
    )

    assert exit_code == 2
    assert "error: This is not a known meter" in capsys.readouterr().err
    assert directory_client.search_calls == []


def test_cli_rejects_invalid_runtime_config(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    runtime_config = tmp_path / "runtime-config.yaml"
    runtime_config.write_text("workflow:\n  address_count: 0\n", encoding="utf-8")

    exit_code = provision_cli.main(["A1:B2:C3:00:00:01", "--config", str(runtime_config)])

    assert exit_code == 2
    assert "workflow.address_count" in capsys.readouterr().err


def test_cli_rejects_unsupported_count(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = provision_cli.main(["A1:B2:C3:00:00:01", "--count", "17"])

    assert exit_code == 2
    assert "address_count must be between 1 and 16" in capsys.readouterr().err


def _factory(directory_client: StubDirectoryClient) -> provision_cli.ControllerFactory:
    def factory(settings: AppSettings, address_count: int | None) -> WorkflowController:
        return WorkflowController(
            directory_client,
            StaticOuiAllowList(),
            StaticDefaultsSource(),
            address_count=address_count or settings.workflow_address_count,
        )

    return factory
