"""
Agentic DevOps Healing - CI/CD Healer Agent
Azure Function that builds, watches and auto-fixes a Jenkins job
"""

import azure.functions as func
import logging
import json
from typing import Optional

from build_healer.config import HealerConfig
from build_healer.models import CycleResult
from build_healer.orchestrator import ALREADY_PROCESSING, BuildWatchdog, CICDOrchestrator

app = func.FunctionApp()

_orchestrator: Optional[CICDOrchestrator] = None
_watchdog: Optional[BuildWatchdog] = None


def get_orchestrator() -> CICDOrchestrator:
    """Process-wide orchestrator, built from the environment on first use"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = CICDOrchestrator.from_config(HealerConfig.from_env())
    return _orchestrator


def get_watchdog() -> BuildWatchdog:
    global _watchdog
    if _watchdog is None:
        _watchdog = BuildWatchdog(get_orchestrator())
    return _watchdog


def json_response(body: dict, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body, indent=2),
        mimetype="application/json",
        status_code=status_code
    )


def cycle_response(result: CycleResult) -> func.HttpResponse:
    if not result.success and result.message == ALREADY_PROCESSING:
        return json_response(result.to_dict(), status_code=409)
    return json_response(result.to_dict())


def error_response(e: Exception) -> func.HttpResponse:
    return json_response({"success": False, "message": str(e)}, status_code=500)


################################################################################
# Request handlers
################################################################################

async def handle_git_webhook(req: func.HttpRequest, orchestrator: CICDOrchestrator) -> func.HttpResponse:
    """
    Push event from the git host. Pushes to the target branch start a
    cycle; the response is sent when the cycle ends.
    """
    try:
        payload = req.get_json()
    except ValueError as e:
        logging.error(f"Invalid JSON in request: {str(e)}")
        return json_response({"success": False, "message": "Invalid JSON payload"}, status_code=400)

    if not isinstance(payload, dict):
        return json_response({"success": False, "message": "Push payload must be a JSON object"}, status_code=400)

    logging.info(f"Push webhook received for ref {payload.get('ref')}")
    return cycle_response(await orchestrator.handle_push_event(payload))


async def handle_manual_trigger(req: func.HttpRequest, orchestrator: CICDOrchestrator) -> func.HttpResponse:
    logging.info("Manual trigger received")
    return cycle_response(await orchestrator.trigger_manual_build())


async def handle_status(req: func.HttpRequest, orchestrator: CICDOrchestrator) -> func.HttpResponse:
    body = {"success": True, "message": "ok", **orchestrator.get_status()}

    # ?check=jenkins also verifies the build server credentials
    if req.params.get("check") == "jenkins":
        body["jenkins"] = await orchestrator.jenkins.test_connection()

    return json_response(body)


async def handle_cancel(req: func.HttpRequest, orchestrator: CICDOrchestrator) -> func.HttpResponse:
    result = orchestrator.cancel()
    return json_response(result.to_dict(), status_code=200 if result.success else 409)


async def handle_watchdog_control(req: func.HttpRequest, watchdog: BuildWatchdog) -> func.HttpResponse:
    """Start or stop the periodic build watchdog"""
    action = req.route_params.get("action")
    if action == "start":
        result = watchdog.start()
    elif action == "stop":
        result = watchdog.stop()
    else:
        return json_response({"success": False, "message": f"Unknown watchdog action: {action}"}, status_code=404)
    return json_response(result.to_dict(), status_code=200 if result.success else 409)


################################################################################
# HTTP routes
################################################################################

@app.function_name(name="GitWebhook")
@app.route(route="cicd/webhook", auth_level=func.AuthLevel.FUNCTION, methods=["POST"])
async def git_webhook(req: func.HttpRequest) -> func.HttpResponse:
    try:
        return await handle_git_webhook(req, get_orchestrator())
    except Exception as e:
        logging.error(f"Error handling push webhook: {str(e)}", exc_info=True)
        return error_response(e)


@app.function_name(name="ManualTrigger")
@app.route(route="cicd/trigger", auth_level=func.AuthLevel.FUNCTION, methods=["POST"])
async def manual_trigger(req: func.HttpRequest) -> func.HttpResponse:
    try:
        return await handle_manual_trigger(req, get_orchestrator())
    except Exception as e:
        logging.error(f"Error handling manual trigger: {str(e)}", exc_info=True)
        return error_response(e)


@app.function_name(name="CycleStatus")
@app.route(route="cicd/status", auth_level=func.AuthLevel.FUNCTION, methods=["GET"])
async def cycle_status(req: func.HttpRequest) -> func.HttpResponse:
    try:
        return await handle_status(req, get_orchestrator())
    except Exception as e:
        logging.error(f"Error reading status: {str(e)}", exc_info=True)
        return error_response(e)


@app.function_name(name="CancelCycle")
@app.route(route="cicd/cancel", auth_level=func.AuthLevel.FUNCTION, methods=["POST"])
async def cancel_cycle(req: func.HttpRequest) -> func.HttpResponse:
    try:
        return await handle_cancel(req, get_orchestrator())
    except Exception as e:
        logging.error(f"Error cancelling cycle: {str(e)}", exc_info=True)
        return error_response(e)


@app.function_name(name="WatchdogControl")
@app.route(route="cicd/watchdog/{action}", auth_level=func.AuthLevel.FUNCTION, methods=["POST"])
async def watchdog_control(req: func.HttpRequest) -> func.HttpResponse:
    try:
        return await handle_watchdog_control(req, get_watchdog())
    except Exception as e:
        logging.error(f"Error changing watchdog state: {str(e)}", exc_info=True)
        return error_response(e)


################################################################################
# Build watchdog
################################################################################

@app.function_name(name="BuildWatchdog")
@app.timer_trigger(schedule="*/30 * * * * *", arg_name="timer", run_on_startup=False)
async def build_watchdog(timer: func.TimerRequest) -> None:
    if timer.past_due:
        logging.info("Watchdog timer is past due")
    try:
        result = await get_watchdog().poll_once()
        if result is not None:
            logging.info(f"Watchdog cycle result: {result.message}")
    except Exception as e:
        logging.error(f"Error in build watchdog: {str(e)}", exc_info=True)
