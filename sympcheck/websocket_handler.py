"""WebSocket session: one ConversationOrchestrator per connected client."""

import asyncio
from contextlib import suppress
import json
import logging
from typing import Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from sympcheck.conversation.orchestrator import ConversationOrchestrator
from sympcheck.diagnosis.ranking import rank_conditions
from sympcheck.llm.client import GatewayError, RateLimitExceeded
from sympcheck.llm.gateway import diagnose_symptoms
from sympcheck.models import (
    ConversationStateData,
    DiagnosisRequest,
    FlowResult,
    WSMessage,
    WSMessageType,
)

logger = logging.getLogger(__name__)

FLOW_ACTIONS = ("start", "answer", "skip", "more", "count", "diagnose")


async def _send(ws: WebSocket, msg_type: WSMessageType, data: dict) -> None:
    """Send a typed JSON message to the client."""
    msg = WSMessage(type=msg_type, data=data)
    await ws.send_text(msg.model_dump_json())


def is_result_stale(task_epoch: int, session_epoch: int) -> bool:
    """Return True when a flow result no longer belongs to the active session."""
    return task_epoch != session_epoch


def build_session_reset_payload() -> dict:
    """Canonical empty session snapshot for frontend reset."""
    return {
        "state": ConversationStateData().model_dump(mode="json"),
        "answers": [],
        "skipped_questions": [],
        "message": "Session reset.",
    }


def flow_result_payload(result: FlowResult, orchestrator: ConversationOrchestrator) -> tuple[WSMessageType, dict]:
    """Map an orchestrator result onto a websocket message."""
    data: dict = {"state": orchestrator.state.model_dump(mode="json")}
    if result.data is not None:
        data.update(result.data.model_dump(by_alias=True))
    if result.error is not None:
        data["message"] = result.error
    return WSMessageType(result.action.value), data


def _parse_count(value: object) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


async def _cancel_task(task: asyncio.Task | None, name: str) -> None:
    """Cancel a task and swallow cancellation errors."""
    if task is None or task.done():
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task
    logger.info("Cancelled %s task.", name)


async def _run_diagnosis(orchestrator: ConversationOrchestrator, ctrl: dict) -> dict:
    """Differential diagnosis over the answers collected so far."""
    request = DiagnosisRequest.model_validate(
        {
            "symptom": orchestrator.state.initial_symptom,
            "answers": orchestrator.get_answers(),
            "age": ctrl.get("age"),
            "gender": ctrl.get("gender"),
            "temperature": ctrl.get("temperature"),
            "blood_pressure": ctrl.get("blood_pressure"),
            "heart_rate": ctrl.get("heart_rate"),
        }
    )
    conditions = rank_conditions(await diagnose_symptoms(request))
    return {"conditions": [c.model_dump(by_alias=True) for c in conditions]}


async def _run_flow_action(
    ws: WebSocket,
    orchestrator: ConversationOrchestrator,
    action: str,
    ctrl: dict,
    task_epoch: int,
    get_session_epoch: Callable[[], int],
) -> None:
    """Run one conversation step and publish its result unless the session moved on."""
    if is_result_stale(task_epoch, get_session_epoch()):
        return

    try:
        if action == "diagnose":
            if not orchestrator.state.initial_symptom.strip():
                await _send(ws, WSMessageType.ERROR, {"message": "Start a conversation first."})
                return
            await _send(ws, WSMessageType.STATUS, {"message": "Ranking possible conditions..."})
            payload = await _run_diagnosis(orchestrator, ctrl)
            if is_result_stale(task_epoch, get_session_epoch()):
                logger.info("Dropping stale diagnosis (epoch=%s).", task_epoch)
                return
            await _send(ws, WSMessageType.DIAGNOSIS, payload)
            return

        step: Awaitable[FlowResult]
        if action == "start":
            symptom = str(ctrl.get("symptom") or "").strip()
            if not symptom:
                await _send(ws, WSMessageType.ERROR, {"message": "Symptom required"})
                return
            orchestrator.start_conversation(symptom)
            step = orchestrator.get_first_question()
        elif action == "answer":
            step = orchestrator.submit_answer(str(ctrl.get("answer") or ""))
        elif action == "skip":
            step = orchestrator.skip_question()
        elif action == "more":
            step = orchestrator.respond_to_more_questions_prompt(bool(ctrl.get("want_more")))
        else:
            step = orchestrator.respond_to_count_prompt(_parse_count(ctrl.get("count")))

        result = await step
        if is_result_stale(task_epoch, get_session_epoch()):
            logger.info("Dropping stale %s result (epoch=%s).", action, task_epoch)
            return

        msg_type, data = flow_result_payload(result, orchestrator)
        await _send(ws, msg_type, data)

    except asyncio.CancelledError:
        logger.info("Flow task cancelled.")
        raise
    except RateLimitExceeded:
        logger.warning("Rate limited during %s.", action)
        await _send(ws, WSMessageType.ERROR, {"message": "External API rate limit exceeded"})
    except (GatewayError, ValidationError, ValueError) as e:
        logger.error("Flow action %s failed: %s", action, e)
        await _send(ws, WSMessageType.ERROR, {"message": f"Request failed: {e}"})


async def handle_websocket(ws: WebSocket) -> None:
    """Main WebSocket handler for a single client session."""
    await ws.accept()
    logger.info("WebSocket client connected.")

    orchestrator = ConversationOrchestrator()
    flow_task: asyncio.Task | None = None
    detached_tasks: set[asyncio.Task] = set()
    session_epoch = 0

    try:
        def get_session_epoch() -> int:
            return session_epoch

        while True:
            message = await ws.receive()
            if message.get("type") == "websocket.disconnect":
                logger.info("WebSocket client disconnected.")
                break

            if not message.get("text"):
                continue

            try:
                ctrl = json.loads(message["text"])
            except json.JSONDecodeError:
                await _send(ws, WSMessageType.ERROR, {"message": "Messages must be JSON."})
                continue
            if not isinstance(ctrl, dict):
                continue

            action = ctrl.get("action")

            if action == "reset":
                session_epoch += 1
                orchestrator.reset()
                # The stale step finishes on its own and its result is dropped.
                if flow_task is not None and not flow_task.done():
                    detached_tasks.add(flow_task)
                    flow_task.add_done_callback(detached_tasks.discard)
                flow_task = None
                await _send(ws, WSMessageType.SESSION_RESET, build_session_reset_payload())

            elif action in FLOW_ACTIONS:
                # One outstanding step per conversation.
                if flow_task is not None and not flow_task.done():
                    await _send(
                        ws,
                        WSMessageType.ERROR,
                        {"message": "Still working on the previous step."},
                    )
                    continue
                flow_task = asyncio.create_task(
                    _run_flow_action(
                        ws,
                        orchestrator,
                        action,
                        ctrl,
                        task_epoch=session_epoch,
                        get_session_epoch=get_session_epoch,
                    )
                )

            else:
                await _send(ws, WSMessageType.ERROR, {"message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected.")
    except Exception as e:
        logger.exception("WebSocket error: %s", e)
    finally:
        await _cancel_task(flow_task, "flow")
        for task in list(detached_tasks):
            await _cancel_task(task, "stale flow")
