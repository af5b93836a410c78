"""Technician CLI: validate a meter MAC, check it, and provision it."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Callable, Sequence

from meter_provisioning.config import AppSettings, get_settings
from meter_provisioning.errors import ClassifiedError
from meter_provisioning.workflow import (
    LookupStatus,
    MacValidationError,
    ProvisioningSummary,
    WorkflowController,
    create_workflow_controller,
)

type ControllerFactory = Callable[[AppSettings, int | None], WorkflowController]
type ConfirmPrompt = Callable[[str], bool]


def main(
    argv: Sequence[str] | None = None,
    *,
    controller_factory: ControllerFactory | None = None,
    confirm: ConfirmPrompt | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        settings = AppSettings.from_yaml(args.config) if args.config else get_settings()
        if controller_factory is not None:
            controller = controller_factory(settings, args.count)
        else:
            controller = create_workflow_controller(settings, address_count=args.count)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    confirm_prompt = confirm or _prompt_confirmation
    return asyncio.run(
        _run(controller, args.mac, assume_yes=args.yes, confirm=confirm_prompt)
    )


async def _run(
    controller: WorkflowController,
    mac: str,
    *,
    assume_yes: bool,
    confirm: ConfirmPrompt,
) -> int:
    try:
        await controller.validate(mac)
    except MacValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    _print_statuses(controller)
    if controller.status_error is not None:
        print(f"status check failed: {_describe(controller.status_error)}")

    summary = await controller.request_provisioning()
    if summary is None:
        found = [
            state.address
            for state in controller.addresses
            if state.lookup_status is LookupStatus.FOUND
        ]
        prompt = (
            f"{', '.join(found)} already registered; overwrite existing configuration? [y/N] "
        )
        if not (assume_yes or confirm(prompt)):
            controller.cancel_confirmation()
            print("provisioning cancelled")
            return 1
        summary = await controller.confirm_provisioning()

    _print_summary(controller, summary)
    return 0 if summary.all_succeeded else 1


def _print_statuses(controller: WorkflowController) -> None:
    for state in controller.addresses:
        line = f"{state.address}  {state.lookup_status.value:<9}  configfile={state.configfile}"
        if state.device_record is not None:
            line += (
                f"  account={state.device_record.account}"
                f" configfile_current={state.device_record.configfile}"
            )
        print(line)


def _print_summary(controller: WorkflowController, summary: ProvisioningSummary) -> None:
    print(f"provisioned {summary.succeeded}/{summary.total} addresses")
    for state in controller.addresses:
        if state.address in summary.failed_addresses and state.error is not None:
            print(f"failed {state.address}: {_describe(state.error)}")


def _describe(error: ClassifiedError) -> str:
    retry = " (retryable)" if error.is_retryable else ""
    return f"{error.title}: {error.message}{retry}"


def _prompt_confirmation(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m meter_provisioning.cli.provision")
    parser.add_argument("mac", help="meter MAC address, any common separator format")
    parser.add_argument(
        "--count",
        type=int,
        help="number of consecutive addresses to provision (defaults to workflow.address_count)",
    )
    parser.add_argument("--config", help="runtime config YAML path")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="overwrite existing registrations without prompting",
    )
    return parser


if __name__ == "__main__":
    raise SystemExit(main())
