"""CLI-friendly orchestrator for running computer-use test sessions on emulated devices."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from actions import translator_for
from config import DecisionConfig, HarnessConfig, PlannerConfig, ReviewConfig, load_config
from cua_client import DecisionService, OpenAICUAClient
from devices import DeviceCatalog, DeviceProfile, default_catalog
from exceptions import HarnessError, ProfileNotFound, TaskLoadError, TaskValidationError
from login import LoginService
from loop import ComputerUseLoop
from prompts import (
    build_review_instructions,
    build_session_instructions,
    convert_test_case_to_steps,
    split_test_case,
)
from review_agent import ReviewWatcher, TestScriptReviewAgent, deliver_review
from screenshots import ScreenshotStore
from session import SessionManager
from session_context import MessageInbox, SessionContext
from session_types import SessionRequest, SessionResult
from status import SessionStatus, StatusArbiter
from task_loader import discover_requests, load_request_file
from test_case_agent import TestCaseAgent
from transport import TEST_CASES, LoggingEmitter, MessageEmitter, RecordingEmitter

DecisionFactory = Callable[[DecisionConfig, DeviceProfile], DecisionService]
ReviewAgentFactory = Callable[[ReviewConfig], TestScriptReviewAgent]
TestCaseAgentFactory = Callable[[PlannerConfig, bool], TestCaseAgent]


def build_catalog(config: HarnessConfig) -> DeviceCatalog:
    if config.devices_file:
        return DeviceCatalog.from_file(config.devices_file)
    return default_catalog


class SessionRunner:
    """Runs one request end to end: device check, launch, loop, cleanup."""

    def __init__(
        self,
        config: HarnessConfig,
        catalog: Optional[DeviceCatalog] = None,
        manager: Optional[SessionManager] = None,
        emitter: Optional[MessageEmitter] = None,
        decision_factory: Optional[DecisionFactory] = None,
        review_agent_factory: Optional[ReviewAgentFactory] = None,
        test_case_agent_factory: Optional[TestCaseAgentFactory] = None,
        login_service: Optional[LoginService] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("cua_runner")
        self.catalog = catalog or build_catalog(config)
        self.manager = manager or SessionManager(config.browser, self.catalog)
        self.emitter = emitter or LoggingEmitter()
        self.decision_factory = decision_factory or (lambda cfg, profile: OpenAICUAClient(cfg, profile))
        self.review_agent_factory = review_agent_factory or (lambda cfg: TestScriptReviewAgent(cfg))
        self.test_case_agent_factory = test_case_agent_factory or (
            lambda cfg, login_required: TestCaseAgent(cfg, login_required=login_required)
        )
        self.login_service = login_service or LoginService(config.login)

    def _result(
        self,
        request: SessionRequest,
        arbiter: StatusArbiter,
        recorder: RecordingEmitter,
        started_at: datetime,
        engine: Optional[str] = None,
        final_response_id: Optional[str] = None,
    ) -> SessionResult:
        reason = arbiter.reason
        if reason is None and not arbiter.is_terminal:
            reason = "Session ended without a verdict"
        return SessionResult(
            request=request,
            status=arbiter.status,
            started_at=started_at,
            finished_at=datetime.utcnow(),
            reason=reason,
            final_response_id=final_response_id,
            messages=recorder.messages,
            engine=engine,
        )

    async def _prepare_reviewer(
        self,
        profile: DeviceProfile,
        test_case_json: str,
        emit: Callable[[str], None],
    ) -> Optional[TestScriptReviewAgent]:
        if not self.config.review.enabled:
            return None
        try:
            agent = self.review_agent_factory(self.config.review)
            await agent.instantiate(build_review_instructions(test_case_json, profile))
        except Exception as exc:
            self.logger.error(f"Review agent initialisation failed: {exc}")
            emit(f"Test script review agent unavailable: {exc}")
            return None
        emit(f"Test script review agent initialized for {profile.name}.")
        return agent

    async def _plan_steps(
        self,
        request: SessionRequest,
        profile: DeviceProfile,
        emit: Callable[[str], None],
    ) -> List[Dict[str, Any]]:
        """Steps from the test case agent, or from local splitting when it is off or fails."""
        if self.config.planner.enabled:
            try:
                agent = self.test_case_agent_factory(self.config.planner, request.login_required)
                planned = await agent.generate(request, profile)
                return planned["steps"]
            except Exception as exc:
                self.logger.error(f"Test case agent failed: {exc}")
                emit(f"Test case agent unavailable ({exc}); splitting the test case locally.")
        return split_test_case(request.test_case)

    async def _login(
        self,
        request: SessionRequest,
        context: SessionContext,
        cua_loop: ComputerUseLoop,
        review_agent: Optional[TestScriptReviewAgent],
        emit: Callable[[str], None],
    ) -> str:
        """Fill the login form, review the filled form, then submit it. Returns the post-login screenshot."""
        page = context.page
        emit(f"Login required for {context.profile.name}... proceeding with login.")
        await self.login_service.fill_credentials(page, request.user_name or "", request.password or "")
        await page.wait_for_timeout(self.config.login.settle_ms)

        screenshot = await cua_loop.capture(page, label="after-login")
        if review_agent is not None:
            context.track(deliver_review(review_agent, context, screenshot, f"{context.review_label} - After login"))

        await self.login_service.submit(page)
        emit("Login step executed... proceeding with test script execution.")
        return screenshot

    async def run(
        self,
        request: SessionRequest,
        emitter: Optional[MessageEmitter] = None,
        arbiter: Optional[StatusArbiter] = None,
        session_id: Optional[str] = None,
        inbox: Optional[MessageInbox] = None,
    ) -> SessionResult:
        """Run a single request and return its outcome. Never raises on test failure."""
        recorder = RecordingEmitter(emitter or self.emitter)
        arbiter = arbiter or StatusArbiter()
        started_at = datetime.utcnow()

        def emit(text: str) -> None:
            recorder.emit("message", text)

        self.logger.debug(f"Received test case: {request.describe()}")
        try:
            profile = self.catalog.get(request.device_name)
        except ProfileNotFound as exc:
            emit(
                f'Error: Device "{request.device_name}" not supported. '
                f"Available devices: {', '.join(self.catalog.list())}"
            )
            arbiter.set(SessionStatus.FAIL, source="runner", reason=str(exc))
            return self._result(request, arbiter, recorder, started_at)

        self.logger.debug(f"Device selected: {profile.name} ({profile.platform})")
        emit(f"Test case received for {profile.name} - creating test script...")

        steps = await self._plan_steps(request, profile, emit)
        test_case_json = json.dumps({"steps": steps})
        review_agent = await self._prepare_reviewer(profile, test_case_json, emit)

        recorder.emit(TEST_CASES, test_case_json)
        emit(f"Task steps created for {profile.name}.")
        test_script = convert_test_case_to_steps({"steps": steps})
        self.logger.debug(f"Test script: {test_script}")

        emit(f"Starting test script execution on {profile.name}...")
        try:
            session = await self.manager.launch(profile.name)
        except HarnessError as exc:
            self.logger.error(f"Launch failed: {exc}")
            emit(f"Error launching {profile.name}: {exc}")
            arbiter.set(SessionStatus.FAIL, source="runner", reason=str(exc))
            return self._result(request, arbiter, recorder, started_at)

        context = SessionContext(session, recorder, arbiter, session_id=session_id, inbox=inbox)
        watcher: Optional[asyncio.Task] = None
        final_response_id: Optional[str] = None
        try:
            emit(f"Browser launched for {profile.name}...")
            await session.page.goto(request.url)
            await session.page.wait_for_timeout(self.config.loop.navigation_settle_ms)

            store = None
            if self.config.reporting.save_screenshots:
                store = ScreenshotStore(self.config.reporting.screenshots_folder, context.session_id)

            decision = self.decision_factory(self.config.decision, profile)
            cua_loop = ComputerUseLoop(
                decision,
                translator_for(profile),
                context,
                config=self.config.loop,
                review_agent=review_agent,
                screenshot_store=store,
            )

            screenshot = await cua_loop.capture(session.page, label="initial")
            if review_agent is not None:
                context.track(deliver_review(review_agent, context, screenshot, context.review_label))
                interval = self.config.review.watch_interval_seconds
                if interval:
                    watcher = asyncio.ensure_future(ReviewWatcher(review_agent).run(context, interval))

            if request.login_required:
                screenshot = await self._login(request, context, cua_loop, review_agent, emit)

            instructions = build_session_instructions(test_script, request.url, profile)
            response = await decision.start(instructions, screenshot, request.user_info)
            self.logger.debug("Starting computer use loop...")
            response = await cua_loop.run(response)
            final_response_id = response.id

            for text in response.output_text():
                emit(text)
        except asyncio.CancelledError:
            arbiter.set(SessionStatus.FAIL, source="runner", reason="Session cancelled")
            raise
        except Exception as exc:
            self.logger.error(f"Error during test execution: {exc}", exc_info=not isinstance(exc, HarnessError))
            emit(f"Error during test execution: {exc}")
            arbiter.set(SessionStatus.FAIL, source="runner", reason=str(exc))
        finally:
            if watcher is not None:
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)
            await context.drain_reviews()
            await self.manager.cleanup(session)

        return self._result(request, arbiter, recorder, started_at, session.engine, final_response_id)


def _requests_from_args(args: argparse.Namespace) -> List[SessionRequest]:
    if args.request_file:
        return [load_request_file(Path(p), default_device=args.device) for p in args.request_file]
    if args.requests_dir:
        return discover_requests(Path(args.requests_dir), only_ids=args.task, default_device=args.device)
    if not (args.test_case and args.url and args.device):
        raise TaskValidationError("--test-case, --url and --device are required without a request file")
    if args.login and not (args.user_name and args.password):
        raise TaskValidationError("--login needs --user-name and --password")
    return [
        SessionRequest(
            id="cli",
            test_case=args.test_case,
            url=args.url,
            device_name=args.device,
            user_info=args.user_info,
            login_required=args.login,
            user_name=args.user_name,
            password=args.password,
        )
    ]


async def run_from_cli_args(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Entry point shared by the CLI script."""
    config_path = Path(args.config) if args.config else None
    cli_overrides = {
        "headful": args.headful,
        "model": args.model,
        "no_review": args.no_review,
        "no_planner": args.no_planner,
        "watch_interval": args.watch_interval,
        "save_screenshots": args.save_screenshots,
        "devices_file": args.devices_file,
        "verbose": args.verbose,
    }
    cli_overrides = {k: v for k, v in cli_overrides.items() if v not in (None, False)}

    try:
        config = load_config(config_path, cli_overrides)
    except Exception as exc:
        logger.error(f"Failed to load config: {exc}")
        return 1

    if args.list_devices:
        catalog = build_catalog(config)
        for device in catalog.describe():
            viewport = device["viewport"]
            print(f"{device['name']:<22} {device['platform']:<8} {viewport['width']}x{viewport['height']}")
        return 0

    try:
        requests = _requests_from_args(args)
    except (TaskLoadError, TaskValidationError) as exc:
        logger.error(str(exc))
        return 1

    if not requests:
        logger.warning("No session requests found")
        return 0

    runner = SessionRunner(config=config, logger=logger)
    results: List[SessionResult] = []
    for i, request in enumerate(requests, 1):
        logger.info(f"=== Running {request.describe()} ({i}/{len(requests)}) ===")
        results.append(await runner.run(request))

    print("\n" + "=" * 60)
    print("SESSION SUMMARY")
    print("=" * 60)
    for result in results:
        line = f"  {result.status.value.upper():<8} {result.request.id} on {result.request.device_name} ({result.duration_seconds:.1f}s)"
        if result.reason and not result.success:
            line += f" - {result.reason[:80]}"
        print(line)
    print("=" * 60)

    if args.json_output:
        Path(args.json_output).write_text(
            json.dumps([r.to_dict() for r in results], indent=2), encoding="utf-8"
        )
        logger.info(f"JSON results: {args.json_output}")

    return 0 if all(r.success for r in results) else 1


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Run a computer-use UI test session on an emulated device.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --list-devices
  %(prog)s --device "iPhone 14" --url https://shop.example.com --test-case "Add a shirt to the cart"
  %(prog)s --request-file requests/checkout.yaml
  %(prog)s --requests-dir requests --device "Google Pixel 8"
        """,
    )

    request_group = parser.add_argument_group("Session Request")
    request_group.add_argument("--device", help="Device profile name (see --list-devices)")
    request_group.add_argument("--url", help="URL of the application under test")
    request_group.add_argument("--test-case", help="Natural-language test case")
    request_group.add_argument("--user-info", help="Extra user data passed to the model")
    request_group.add_argument(
        "--login",
        action="store_true",
        help="Fill and submit the login form before the test starts",
    )
    request_group.add_argument("--user-name", help="User name for --login")
    request_group.add_argument("--password", help="Password for --login")
    request_group.add_argument(
        "--request-file",
        action="append",
        help="YAML/JSON request file (can be used multiple times)",
    )
    request_group.add_argument("--requests-dir", help="Directory of YAML/JSON request files")
    request_group.add_argument(
        "--task",
        action="append",
        help="Only run the request with this id from --requests-dir (can be used multiple times)",
    )
    request_group.add_argument(
        "--list-devices",
        action="store_true",
        help="List available device profiles and exit",
    )

    browser_group = parser.add_argument_group("Browser Options")
    browser_group.add_argument(
        "--headful",
        action="store_true",
        help="Run browser in headful mode (show GUI)",
    )
    browser_group.add_argument("--devices-file", help="YAML/JSON file with extra device profiles")

    model_group = parser.add_argument_group("Model Options")
    model_group.add_argument("--model", help="Computer-use model name (default: computer-use-preview)")
    model_group.add_argument(
        "--no-review",
        action="store_true",
        help="Disable the test script review agent",
    )
    model_group.add_argument(
        "--no-planner",
        action="store_true",
        help="Split the test case locally instead of asking the test case agent",
    )
    model_group.add_argument(
        "--watch-interval",
        type=float,
        metavar="SECONDS",
        help="Run the periodic reviewer every N seconds",
    )
    model_group.add_argument(
        "--config",
        help="Path to config file (default: config.json if exists)",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--save-screenshots",
        action="store_true",
        help="Save every captured screenshot",
    )
    output_group.add_argument("--json-output", help="Write session results as JSON to this path")
    output_group.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    output_group.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-essential output",
    )

    return parser


def main() -> None:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args()

    if args.quiet:
        log_level = logging.WARNING
    elif args.verbose:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(message)s" if not args.verbose else "[%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("cua_runner")

    try:
        exit_code = asyncio.run(run_from_cli_args(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except HarnessError as exc:
        logger.error(f"Error: {exc}")
        exit_code = 1
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
