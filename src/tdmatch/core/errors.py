from __future__ import annotations


class ErrorCode:
    VALIDATION_ERROR = "ValidationError"
    UNREGISTERED_REQUEST_TYPE = "UnregisteredRequestType"
    HANDLER_FAULT = "HandlerFault"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_POSITION = "InvalidPosition"
    UNKNOWN_BUILDING_TYPE = "UnknownBuildingType"
    UNKNOWN_BUILDING = "UnknownBuilding"
    WAVE_OUT_OF_SEQUENCE = "WaveOutOfSequence"
    ROUND_OUT_OF_SEQUENCE = "RoundOutOfSequence"
    ROUND_ALREADY_ACTIVE = "RoundAlreadyActive"
    MATCH_ALREADY_ENDED = "MatchAlreadyEnded"
    SIMULATION_ABORTED = "SimulationAborted"


class MatchError(Exception):
    code = ""


class ValidationError(MatchError, ValueError):
    """Raised by request constructors; the request never reaches a handler."""

    code = ErrorCode.VALIDATION_ERROR


class UnregisteredRequestType(MatchError, LookupError):
    code = ErrorCode.UNREGISTERED_REQUEST_TYPE

    def __init__(self, request_type: type) -> None:
        super().__init__(f"No handler registered for {request_type.__name__}")
        self.request_type = request_type


class HandlerFault(MatchError, RuntimeError):
    code = ErrorCode.HANDLER_FAULT

    def __init__(self, request_type: type, cause: BaseException) -> None:
        super().__init__(f"Handler for {request_type.__name__} failed: {cause!r}")
        self.request_type = request_type
        self.cause = cause
