from __future__ import annotations

import io
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, Field, validator

from bfvm.instructions import DEFAULT_TAPE_SIZE, MachineState
from bfvm.machine import BoundsError, ExecutionState, StepLimitExceeded, VirtualMachine
from bfvm.parser import ParseError, parse

from .session import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

TOTAL_STEPS_CAP = 10000
MAX_TAPE_SIZE = 1 << 20


def _string_to_input_bytes(data: str) -> bytes:
    return data.encode("latin-1")


def _state_to_dict(state: ExecutionState) -> dict:
    return {
        "step": state.step,
        "pc": state.pc,
        "instruction": state.instruction,
        "pointer": state.pointer,
        "tape_start": state.tape_start,
        "tape": list(state.tape),
        "output": state.output.decode("latin-1"),
        "code_length": state.code_length,
    }


def _calculate_total_steps(
    code: str,
    input_template: bytes,
    tape_size: int,
    cap: int = TOTAL_STEPS_CAP,
) -> tuple[int, bool]:
    machine = VirtualMachine(
        stdin=io.BytesIO(input_template),
        stdout=io.BytesIO(),
        max_steps=cap,
    )
    try:
        machine.execute(parse(code), MachineState.zeroed(tape_size))
    except StepLimitExceeded:
        return cap, True
    except BoundsError:
        # the session reports the failure when it reaches that step
        return machine.steps, False
    return machine.steps, False


class SessionConfiguration(BaseModel):
    code: str = ""
    input: str = ""
    tape_size: int = Field(default=DEFAULT_TAPE_SIZE, ge=1, le=MAX_TAPE_SIZE)
    tape_window: int = Field(default=10, ge=0)
    max_steps: Optional[int] = Field(default=None, ge=1)
    history_limit: int = Field(default=200, ge=1)

    @validator("input")
    def validate_input(cls, value: str) -> str:
        try:
            value.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise ValueError("input must only contain characters U+0000 to U+00FF") from exc
        return value


class SessionState(BaseModel):
    step: int
    pc: int
    instruction: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    output: str
    code_length: int


class SessionPayload(BaseModel):
    session_id: str
    code: str
    state: SessionState
    history: List[SessionState]
    finished: bool
    history_size: int
    breakpoints: List[int]
    hit_breakpoint: Optional[int]
    total_steps: int
    total_steps_capped: bool


class StepRequest(BaseModel):
    count: int = Field(default=1, ge=1)


class StepResponse(BaseModel):
    session_id: str
    code: str
    states: List[SessionState]
    history: List[SessionState]
    finished: bool
    history_size: int
    breakpoints: List[int]
    hit_breakpoint: Optional[int]
    total_steps: int
    total_steps_capped: bool


class RunRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    ignore_breakpoints: bool = False


class BreakpointRequest(BaseModel):
    pc: int = Field(ge=0)


def create_app(store: Optional[SessionStore] = None) -> FastAPI:
    session_store = store if store is not None else SessionStore()
    app = FastAPI(title="bfvm session API", version="0.1.0")

    def _serialize_states(states: List[ExecutionState]) -> List[SessionState]:
        return [SessionState(**_state_to_dict(state)) for state in states]

    def _get_record(session_id: str) -> SessionRecord:
        try:
            return session_store.get(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    def _build_payload(record: SessionRecord) -> SessionPayload:
        session = record.session
        return SessionPayload(
            session_id=record.session_id,
            code=session.code,
            state=SessionState(**_state_to_dict(session.current_state())),
            history=_serialize_states(session.history),
            finished=session.is_finished(),
            history_size=len(session.history),
            breakpoints=session.list_breakpoints(),
            hit_breakpoint=session.hit_breakpoint,
            total_steps=record.total_steps,
            total_steps_capped=record.total_steps_capped,
        )

    def _build_step_response(record: SessionRecord, states: List[ExecutionState]) -> StepResponse:
        session = record.session
        return StepResponse(
            session_id=record.session_id,
            code=session.code,
            states=_serialize_states(states),
            history=_serialize_states(session.history),
            finished=session.is_finished(),
            history_size=len(session.history),
            breakpoints=session.list_breakpoints(),
            hit_breakpoint=session.hit_breakpoint,
            total_steps=record.total_steps,
            total_steps_capped=record.total_steps_capped,
        )

    @app.post("/api/session", response_model=SessionPayload, status_code=status.HTTP_201_CREATED)
    def create_session(payload: SessionConfiguration) -> SessionPayload:
        input_bytes = _string_to_input_bytes(payload.input)
        try:
            total_steps, total_steps_capped = _calculate_total_steps(
                payload.code,
                input_bytes,
                payload.tape_size,
            )
        except ParseError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(exc),
            ) from exc

        record = session_store.create_session(
            code=payload.code,
            input_template=input_bytes,
            tape_window=payload.tape_window,
            max_steps=payload.max_steps,
            history_limit=payload.history_limit,
            tape_size=payload.tape_size,
            total_steps=total_steps,
            total_steps_capped=total_steps_capped,
        )
        logger.debug("Created session %s", record.session_id)
        return _build_payload(record)

    @app.get("/api/session/{session_id}", response_model=SessionPayload)
    def get_session(session_id: str) -> SessionPayload:
        return _build_payload(_get_record(session_id))

    @app.post("/api/session/{session_id}/reset", response_model=SessionPayload)
    def reset_session(session_id: str) -> SessionPayload:
        try:
            record = session_store.reset(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return _build_payload(record)

    @app.post("/api/session/{session_id}/step", response_model=StepResponse)
    def step_session(session_id: str, payload: StepRequest) -> StepResponse:
        record = _get_record(session_id)
        try:
            states = list(record.session.step_forward(payload.count))
        except (StepLimitExceeded, BoundsError) as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=str(exc),
            ) from exc
        return _build_step_response(record, states)

    @app.post("/api/session/{session_id}/run", response_model=StepResponse)
    def run_session(session_id: str, payload: RunRequest) -> StepResponse:
        record = _get_record(session_id)
        session = record.session
        original_breakpoints: Optional[set[int]] = None
        if payload.ignore_breakpoints:
            original_breakpoints = set(session.breakpoints)
            session.clear_breakpoints()
            session.hit_breakpoint = None

        limit = payload.limit
        if limit is None and session.max_steps is None:
            limit = TOTAL_STEPS_CAP

        try:
            states = list(session.run_until_break(limit))
        except (StepLimitExceeded, BoundsError) as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=str(exc),
            ) from exc
        finally:
            if original_breakpoints is not None:
                session.breakpoints = original_breakpoints
                session.hit_breakpoint = None

        return _build_step_response(record, states)

    @app.post("/api/session/{session_id}/breakpoints", response_model=SessionPayload)
    def add_breakpoint(session_id: str, payload: BreakpointRequest) -> SessionPayload:
        record = _get_record(session_id)
        record.session.add_breakpoint(payload.pc)
        return _build_payload(record)

    @app.delete("/api/session/{session_id}/breakpoints/{pc}", response_model=SessionPayload)
    def remove_breakpoint(session_id: str, pc: int) -> SessionPayload:
        record = _get_record(session_id)
        if not record.session.remove_breakpoint(pc):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Breakpoint not found at pc={pc}",
            )
        return _build_payload(record)

    @app.delete("/api/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_session(session_id: str) -> Response:
        if not session_store.remove(session_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown session id: {session_id}",
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = ["create_app"]
